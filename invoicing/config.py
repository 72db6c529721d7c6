from __future__ import annotations

import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from invoicing.models.common import Currency

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
TEMPLATES_DIR = ROOT_DIR / "templates"
SETTINGS_JSON = DATA_DIR / "settings.json"

logger = logging.getLogger(__name__)


class NumberingSettings(BaseModel):
    invoice_prefix: str = "INV-"


class AISettings(BaseModel):
    model: str = "gpt-4o"
    api_key: Optional[str] = None


class BackupSettings(BaseModel):
    enabled: bool = True
    keep: int = Field(default=5, ge=0)


class AppSettings(BaseModel):
    """
    Réglages applicatifs (data/settings.json, surchargés par l'environnement).
    Le taux de TVA n'est jamais codé en dur ailleurs: tout passe par tax_rate.
    """
    data_dir: Path = DATA_DIR
    tax_rate: Decimal = Field(default=Decimal("0.23"), ge=0, le=1)
    default_currency: Currency = "EUR"
    due_days: int = Field(default=30, ge=0)
    free_invoice_limit: int = Field(default=3, ge=0)
    numbering: NumberingSettings = Field(default_factory=NumberingSettings)
    ai: AISettings = Field(default_factory=AISettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)


def _load_json(path: os.PathLike | str) -> Optional[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable settings file %s (%s), using defaults", p, e)
        return None
    return data if isinstance(data, dict) else None


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if os.getenv("INVOICING_TAX_RATE"):
        out["tax_rate"] = os.environ["INVOICING_TAX_RATE"]
    if os.getenv("INVOICING_DATA_DIR"):
        out["data_dir"] = os.environ["INVOICING_DATA_DIR"]
    ai: Dict[str, Any] = {}
    if os.getenv("OPENAI_API_KEY"):
        ai["api_key"] = os.environ["OPENAI_API_KEY"]
    if os.getenv("OPENAI_MODEL"):
        ai["model"] = os.environ["OPENAI_MODEL"]
    if ai:
        out["ai"] = ai
    return out


def load_settings(path: os.PathLike | str = SETTINGS_JSON, *, use_env: bool = True) -> AppSettings:
    raw = _load_json(path) or {}
    if use_env:
        load_dotenv()
        env = _env_overrides()
        if "ai" in env:
            env["ai"] = {**(raw.get("ai") or {}), **env["ai"]}
        raw = {**raw, **env}
    try:
        return AppSettings.model_validate(raw)
    except ValidationError as e:
        # seules les clés invalides reprennent leur valeur par défaut
        bad = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        logger.warning("Invalid settings %s in %s, using defaults for them: %s", bad, path, e)
        return AppSettings.model_validate({k: v for k, v in raw.items() if k not in bad})
