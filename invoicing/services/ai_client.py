from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from invoicing.config import TEMPLATES_DIR, AppSettings
from invoicing.errors import AIResponseError
from invoicing.models.autofill import MAX_NOTE_WORDS, MAX_SUGGESTED_ITEMS, AutofillRequest

PROMPTS_DIR = TEMPLATES_DIR / "prompts"

logger = logging.getLogger(__name__)


class AutofillGenerator(Protocol):
    """Service de génération: reçoit la requête et le nom du prompt, renvoie du JSON brut."""

    async def generate(self, request: AutofillRequest, template: str) -> Any:
        ...


class PromptLibrary:
    """Prompts nommés: templates/prompts/<name>.j2"""

    def __init__(self, directory: Union[str, Path] = PROMPTS_DIR) -> None:
        self.env = Environment(
            loader=FileSystemLoader(str(directory)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, name: str, **ctx: Any) -> str:
        try:
            tpl = self.env.get_template(f"{name}.j2")
        except TemplateNotFound as e:
            raise KeyError(f"unknown prompt template {name!r}") from e
        return tpl.render(**ctx)

    def render_autofill(self, request: AutofillRequest, template: str = "invoice_autofill") -> str:
        return self.render(
            template,
            request=request,
            max_items=MAX_SUGGESTED_ITEMS,
            max_note_words=MAX_NOTE_WORDS,
        )


def parse_json_payload(text: str) -> Any:
    """Extrait le JSON d'une réponse LLM (tolère les blocs ```json)."""
    text = (text or "").strip()
    if text.startswith("```json"):
        text = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif text.startswith("```"):
        text = text.split("```", 1)[1].split("```", 1)[0].strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise AIResponseError(f"LLM did not return valid JSON: {e}") from e


class OpenAIAutofillGenerator:
    """Client OpenAI (Responses API) pour l'autofill."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        *,
        prompts: Optional[PromptLibrary] = None,
        client: Any = None,
    ) -> None:
        self._model = model
        self._prompts = prompts or PromptLibrary()
        if client is not None:
            self._client = client
            return

        from openai import AsyncOpenAI

        if not api_key:
            raise ValueError("OpenAI API key not provided and OPENAI_API_KEY env var not set")
        self._client = AsyncOpenAI(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "OpenAIAutofillGenerator":
        return cls(api_key=settings.ai.api_key, model=settings.ai.model)

    async def generate(self, request: AutofillRequest, template: str) -> Dict[str, Any]:
        prompt = self._prompts.render_autofill(request, template)
        response = await self._client.responses.create(model=self._model, input=prompt)
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                "autofill tokens: in=%s out=%s",
                getattr(usage, "input_tokens", None),
                getattr(usage, "output_tokens", None),
            )
        return parse_json_payload(response.output_text)
