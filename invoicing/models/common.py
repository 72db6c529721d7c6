from __future__ import annotations
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal
import uuid

Currency = Literal["EUR", "USD", "GBP"]

# bornes d'une ligne: quantité × prix ne peut pas déborder
MAX_QUANTITY = Decimal("1e9")
MAX_UNIT_PRICE = Decimal("1e12")


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(val: Any) -> Decimal:
    """Conversion souple: None, "", "abc", NaN -> 0. Ne lève jamais."""
    if val is None or isinstance(val, bool):
        return Decimal("0")
    if isinstance(val, Decimal):
        return val if val.is_finite() else Decimal("0")
    try:
        d = Decimal(str(val).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return d if d.is_finite() else Decimal("0")


class Owned(BaseModel):
    """Base des entités rattachées à un seul utilisateur (owner_id)."""
    id: str = Field(default_factory=gen_id)
    owner_id: str


class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self):
        object.__setattr__(self, "updated_at", utcnow())
