from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from invoicing.models.common import MAX_QUANTITY, MAX_UNIT_PRICE, to_decimal as _to_decimal
from invoicing.models.invoice import DraftLineItem, LineItem

ItemLike = Union[DraftLineItem, LineItem, Mapping[str, Any]]

ZERO = Decimal("0")


def _field(item: Any, *names: str) -> Any:
    for n in names:
        if isinstance(item, Mapping):
            if n in item:
                return item[n]
        elif hasattr(item, n):
            return getattr(item, n)
    return None


def line_amount(item: ItemLike) -> Decimal:
    """quantité × prix; une valeur non numérique ou hors bornes compte pour 0."""
    qty = _to_decimal(_field(item, "quantity", "qty"))
    price = _to_decimal(_field(item, "unit_price", "unitPrice", "price"))
    if abs(qty) > MAX_QUANTITY or abs(price) > MAX_UNIT_PRICE:
        return ZERO
    return qty * price


def compute_subtotal(items: Iterable[ItemLike]) -> Decimal:
    return sum((line_amount(it) for it in items), ZERO)


def compute_tax(subtotal: Decimal, rate: Decimal) -> Decimal:
    return _to_decimal(subtotal) * _to_decimal(rate)


def compute_total(subtotal: Decimal, tax: Decimal) -> Decimal:
    return _to_decimal(subtotal) + _to_decimal(tax)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def compute_totals(items: Iterable[ItemLike], rate: Decimal) -> Totals:
    subtotal = compute_subtotal(items)
    tax = compute_tax(subtotal, rate)
    return Totals(subtotal=subtotal, tax=tax, total=compute_total(subtotal, tax))


class Ledger:
    """
    Lignes d'un brouillon + calculs. Aucun total n'est mis en cache:
    subtotal/tax/total sont recalculés à chaque lecture.

    La liste est partagée (pas copiée): le Ledger d'un brouillon modifie
    directement `draft.line_items`.
    """

    def __init__(self, items: Optional[List[DraftLineItem]] = None, *, tax_rate: Decimal) -> None:
        self._items: List[DraftLineItem] = items if items is not None else []
        self.tax_rate = _to_decimal(tax_rate)

    @property
    def items(self) -> List[DraftLineItem]:
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    def add_item(self) -> DraftLineItem:
        item = DraftLineItem()
        self._items.append(item)
        return item

    def remove_item(self, index: int) -> DraftLineItem:
        # la règle "au moins une ligne visible" appartient à l'UI, pas ici
        if not -len(self._items) <= index < len(self._items):
            raise IndexError(f"no line item at index {index}")
        return self._items.pop(index)

    def replace_items(self, items: Sequence[ItemLike]) -> None:
        self._items[:] = [
            it if isinstance(it, DraftLineItem) else DraftLineItem.model_validate(
                it.model_dump() if isinstance(it, LineItem) else dict(it)
            )
            for it in items
        ]

    @property
    def subtotal(self) -> Decimal:
        return compute_subtotal(self._items)

    @property
    def tax(self) -> Decimal:
        return compute_tax(self.subtotal, self.tax_rate)

    @property
    def total(self) -> Decimal:
        return compute_total(self.subtotal, self.tax)

    def totals(self) -> Totals:
        return compute_totals(self._items, self.tax_rate)
