"""Tests for subtotal / tax / total computation and line-item mutations."""
from decimal import Decimal

import pytest

from invoicing.models.invoice import DraftLineItem, LineItem
from invoicing.services.ledger import (
    Ledger,
    compute_subtotal,
    compute_tax,
    compute_total,
    compute_totals,
)

RATE = Decimal("0.23")


def test_example_invoice_totals():
    items = [
        {"description": "A", "quantity": 2, "unit_price": 150},
        {"description": "B", "quantity": 25, "unit_price": 80},
    ]
    totals = compute_totals(items, RATE)

    assert totals.subtotal == 2300
    assert totals.tax == 529
    assert totals.total == 2829


def test_empty_row_contributes_zero():
    items = [
        DraftLineItem(description="A", quantity=2, unit_price=150),
        DraftLineItem(description="", quantity=0, unit_price=0),
    ]
    assert compute_subtotal(items) == 300


@pytest.mark.parametrize(
    "row",
    [
        {},
        {"description": "x"},
        {"quantity": "", "unit_price": None},
        {"quantity": "abc", "unit_price": 10},
        {"quantity": 3, "unit_price": "NaN"},
        {"quantity": True, "unit_price": 5},
    ],
)
def test_partial_or_non_numeric_fields_count_as_zero(row):
    assert compute_subtotal([row]) == 0


@pytest.mark.parametrize(
    "items, expected_subtotal",
    [
        ([], Decimal("0")),
        ([{"quantity": 1, "unit_price": 0}], Decimal("0")),
        ([{"quantity": "0.1", "unit_price": 3}, {"quantity": 7, "unit_price": "19.99"}], Decimal("140.23")),
        ([LineItem(description="Hosting", quantity=12, unit_price=Decimal("4.5"))], Decimal("54")),
        ([{"quantity": 1.5, "unit_price": 2.25}, {"qty": 2, "unitPrice": 10}], Decimal("23.375")),
    ],
)
def test_totals_identities_hold(items, expected_subtotal):
    totals = compute_totals(items, RATE)

    assert totals.subtotal == expected_subtotal
    assert totals.tax == totals.subtotal * RATE
    assert totals.total == totals.subtotal + totals.tax


def test_tax_uses_the_given_rate():
    assert compute_tax(Decimal("100"), Decimal("0.2")) == 20
    assert compute_tax(Decimal("100"), Decimal("0")) == 0
    assert compute_total(Decimal("100"), Decimal("20")) == 120


def test_add_item_appends_zero_valued_row():
    ledger = Ledger([DraftLineItem(description="A", quantity=1, unit_price=10)], tax_rate=RATE)

    row = ledger.add_item()

    assert len(ledger) == 2
    assert ledger.items[-1] is row
    assert (row.description, row.quantity, row.unit_price) == ("", 0, 0)
    assert ledger.subtotal == 10


def test_remove_item_down_to_empty_list():
    ledger = Ledger(
        [DraftLineItem(description="A", quantity=1, unit_price=10),
         DraftLineItem(description="B", quantity=1, unit_price=5)],
        tax_rate=RATE,
    )

    ledger.remove_item(0)
    assert [i.description for i in ledger.items] == ["B"]
    ledger.remove_item(0)
    assert ledger.items == []
    assert ledger.total == 0

    with pytest.raises(IndexError):
        ledger.remove_item(0)


def test_totals_are_recomputed_after_every_edit():
    ledger = Ledger([DraftLineItem(description="A", quantity=1, unit_price=100)], tax_rate=RATE)
    assert ledger.total == 123

    ledger.items[0].quantity = Decimal("2")
    assert ledger.subtotal == 200
    assert ledger.tax == 46
    assert ledger.total == 246


def test_ledger_mutates_the_shared_list():
    rows = [DraftLineItem(description="A", quantity=1, unit_price=1)]
    ledger = Ledger(rows, tax_rate=RATE)

    ledger.add_item()

    assert len(rows) == 2


def test_replace_items_accepts_line_items_and_mappings():
    ledger = Ledger([DraftLineItem(description="old", quantity=1, unit_price=1)], tax_rate=RATE)

    ledger.replace_items([
        LineItem(description="Audit", quantity=1, unit_price=500),
        {"description": "Travel", "quantity": 2, "unitPrice": 40},
    ])

    assert [i.description for i in ledger.items] == ["Audit", "Travel"]
    assert all(isinstance(i, DraftLineItem) for i in ledger.items)
    assert ledger.subtotal == 580


@pytest.mark.parametrize(
    "row",
    [
        {"quantity": "1e999999", "unit_price": "1e999999"},
        {"quantity": 2, "unit_price": "1e13"},
        {"quantity": "-1e10", "unit_price": 1},
    ],
)
def test_out_of_range_values_count_as_zero(row):
    items = [row, {"quantity": 1, "unit_price": 100}]

    totals = compute_totals(items, RATE)

    assert totals.subtotal == 100
    assert totals.total == 123


def test_huge_draft_row_does_not_break_totals():
    ledger = Ledger(
        [DraftLineItem(description="Typo", quantity="1e999999", unit_price="1e999999"),
         DraftLineItem(description="A", quantity=1, unit_price=10)],
        tax_rate=RATE,
    )

    assert ledger.subtotal == 10
    assert ledger.totals().total == Decimal("12.30")
