from __future__ import annotations
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Any, List, Literal, Optional
from datetime import date, timedelta
from decimal import Decimal
from .common import MAX_QUANTITY, MAX_UNIT_PRICE, Currency, Owned, TimeStamped, gen_id, to_decimal
from .client import Client

InvoiceStatus = Literal["draft", "pending", "paid", "overdue"]

DEFAULT_DUE_DAYS = 30


class LineItem(BaseModel):
    """Ligne validée (facture persistée, suggestion IA)."""
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0, le=MAX_QUANTITY)
    unit_price: Decimal = Field(ge=0, le=MAX_UNIT_PRICE, validation_alias=AliasChoices("unit_price", "unitPrice"))

    @field_validator("description")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("description is required")
        return v


class DraftLineItem(BaseModel):
    """Ligne en cours d'édition: tout est toléré, rien n'est bloquant."""
    id: str = Field(default_factory=gen_id)  # clé stable pour le diff UI
    description: str = ""
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("unit_price", "unitPrice"))

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def _coerce_number(cls, v: Any) -> Decimal:
        # saisie en cours: "", None, "abc" -> 0 (comme parseFloat(...) || 0)
        return to_decimal(v)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @classmethod
    def from_line_item(cls, item: LineItem) -> "DraftLineItem":
        return cls(description=item.description, quantity=item.quantity, unit_price=item.unit_price)


def _default_lines() -> List[DraftLineItem]:
    return [DraftLineItem(quantity=1)]


class InvoiceDraft(BaseModel):
    client_id: str = ""
    issue_date: date = Field(default_factory=date.today)
    due_date: date = Field(default_factory=lambda: date.today() + timedelta(days=DEFAULT_DUE_DAYS))
    currency: Currency = "EUR"
    line_items: List[DraftLineItem] = Field(default_factory=_default_lines)
    note: Optional[str] = ""

    @classmethod
    def new(cls, *, currency: Currency = "EUR", due_days: int = DEFAULT_DUE_DAYS) -> "InvoiceDraft":
        today = date.today()
        return cls(issue_date=today, due_date=today + timedelta(days=due_days), currency=currency)

    @classmethod
    def from_invoice(cls, inv: "Invoice") -> "InvoiceDraft":
        return cls(
            client_id=inv.client.id,
            issue_date=inv.issue_date,
            due_date=inv.due_date,
            currency=inv.currency,
            line_items=[DraftLineItem.from_line_item(li) for li in inv.line_items],
            note=inv.note,
        )


class Invoice(Owned, TimeStamped):
    invoice_number: str
    client: Client  # snapshot au moment de l'enregistrement
    line_items: List[LineItem] = Field(min_length=1)
    status: InvoiceStatus = "draft"

    issue_date: date
    due_date: date
    currency: Currency = "EUR"

    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    note: Optional[str] = None

    class Config:
        extra = "ignore"  # tolère d'anciennes clés dans les JSON
