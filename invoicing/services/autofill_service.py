from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Union

from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import AIResponseError, AutofillInProgressError, ValidationError
from invoicing.models.autofill import AutofillRequest, AutofillResult
from invoicing.models.identity import Identity
from invoicing.models.invoice import DraftLineItem, InvoiceDraft
from invoicing.services.ai_client import AutofillGenerator
from invoicing.services.draft_session import DraftSession

logger = logging.getLogger(__name__)

AUTOFILL_TEMPLATE = "invoice_autofill"


def _is_blank(item: DraftLineItem) -> bool:
    return not item.description.strip() and item.quantity == 0 and item.unit_price == 0


def build_autofill_request(draft: InvoiceDraft, user_id: str) -> AutofillRequest:
    if not (draft.client_id or "").strip():
        raise ValidationError("client required")
    try:
        return AutofillRequest(
            client_id=draft.client_id,
            currency=draft.currency,
            user_id=user_id,
            existing_line_items=[it for it in draft.line_items if not _is_blank(it)],
        )
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


def parse_autofill_result(raw: Union[AutofillResult, Mapping[str, Any], str, bytes, None]) -> AutofillResult:
    """Valide la réponse (non fiable) du service: 1..5 lignes, note <= 50 mots."""
    if isinstance(raw, AutofillResult):
        raw = raw.model_dump()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AIResponseError(f"autofill response is not JSON: {e}") from e
    if not isinstance(raw, Mapping):
        raise AIResponseError(f"autofill response must be an object, got {type(raw).__name__}")
    try:
        return AutofillResult.model_validate(dict(raw))
    except PydanticValidationError as e:
        raise AIResponseError(f"autofill response out of contract: {e}") from e


def apply_autofill(draft: InvoiceDraft, result: AutofillResult) -> InvoiceDraft:
    """Transition pure: remplace toutes les lignes et la note, le reste est conservé."""
    return draft.model_copy(
        update={
            "line_items": [DraftLineItem.from_line_item(it) for it in result.suggested_items],
            "note": result.suggested_note,
        },
        deep=True,
    )


class AutofillOrchestrator:
    def __init__(self, generator: AutofillGenerator, *, template: str = AUTOFILL_TEMPLATE) -> None:
        self.generator = generator
        self.template = template

    async def suggest(self, draft: InvoiceDraft, user_id: str) -> AutofillResult:
        request = build_autofill_request(draft, user_id)
        try:
            raw = await self.generator.generate(request, self.template)
        except AIResponseError:
            logger.warning("AI autofill failed for client %s", request.client_id, exc_info=True)
            raise
        except Exception as e:
            logger.warning("AI autofill error for client %s: %s", request.client_id, e, exc_info=True)
            raise AIResponseError("Failed to get AI suggestions.") from e
        try:
            return parse_autofill_result(raw)
        except AIResponseError as e:
            logger.warning("AI autofill rejected for client %s: %s", request.client_id, e)
            raise

    async def autofill(self, session: DraftSession, identity: Identity) -> InvoiceDraft:
        """
        Applique les suggestions IA au brouillon de la session.

        Lève ValidationError (pas de client: aucun appel), AutofillInProgressError
        (un appel déjà en vol) ou AIResponseError. En cas d'erreur le brouillon
        reste intact.
        """
        if not (session.draft.client_id or "").strip():
            raise ValidationError("client required")
        if session.closed:
            raise ValidationError("draft session is closed")
        if session.autofill_pending:
            raise AutofillInProgressError("an autofill request is already running for this draft")

        async with session.autofill_lock:
            result = await self.suggest(session.draft, identity.user_id)
            if session.closed:
                # vue démontée pendant l'appel: on ignore la réponse
                logger.info("Discarding late autofill result for client %s", session.draft.client_id)
                return session.draft
            session.draft = apply_autofill(session.draft, result)
            logger.info("AI suggestions applied (%d items)", len(result.suggested_items))
            return session.draft
