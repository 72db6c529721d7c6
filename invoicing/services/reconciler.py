from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import PersistenceError, ValidationError
from invoicing.models.client import Client
from invoicing.models.invoice import Invoice, InvoiceDraft, LineItem
from invoicing.services.ledger import compute_totals
from invoicing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)

INVOICE_SEQUENCE = "invoice"


class InvoiceReconciler:
    """
    Brouillon + client + propriétaire -> Invoice persistée.
    Les totaux sont toujours recalculés depuis les lignes, jamais repris tels quels.
    """

    def __init__(self, store: DocumentStore, *, tax_rate: Decimal, invoice_prefix: str = "INV-") -> None:
        self.store = store
        self.tax_rate = tax_rate
        self.invoice_prefix = invoice_prefix
        self._number_re = re.compile(rf"^{re.escape(invoice_prefix)}\d{{4}}-(\d+)$")

    # ----------- validation ----------- #

    def _checked_lines(
        self,
        draft: InvoiceDraft,
        client_snapshot: Optional[Client],
        owner_id: str,
        existing: Optional[Invoice],
    ) -> List[LineItem]:
        if client_snapshot is None:
            raise ValidationError("client must be selected")
        if draft.client_id and client_snapshot.id != draft.client_id:
            raise ValidationError("selected client does not match the draft")
        if client_snapshot.owner_id != owner_id:
            raise ValidationError("client belongs to another user")
        if existing is not None and existing.owner_id != owner_id:
            raise ValidationError("invoice belongs to another user")
        if not draft.line_items:
            raise ValidationError("at least one line item is required")

        lines: List[LineItem] = []
        for idx, row in enumerate(draft.line_items, start=1):
            try:
                lines.append(LineItem(description=row.description, quantity=row.quantity, unit_price=row.unit_price))
            except PydanticValidationError as e:
                raise ValidationError(f"line item {idx} is invalid: {e.errors()[0]['msg']}") from e
        return lines

    # ----------- numérotation ----------- #

    def next_invoice_number(self, owner_id: str) -> str:
        # plancher = plus grand numéro déjà utilisé par ce propriétaire
        floor = 0
        for row in self.store.invoices.list(owner_id):
            m = self._number_re.match(str(row.get("invoice_number") or ""))
            if m:
                floor = max(floor, int(m.group(1)))
        seq = self.store.next_sequence(owner_id, INVOICE_SEQUENCE, floor=floor)
        return f"{self.invoice_prefix}{date.today().year}-{seq:05d}"

    # ----------- construction ----------- #

    def build_invoice(
        self,
        draft: InvoiceDraft,
        client_snapshot: Optional[Client],
        owner_id: str,
        *,
        invoice_number: str,
        existing: Optional[Invoice] = None,
    ) -> Invoice:
        """Partie pure: aucune I/O, le brouillon n'est pas modifié."""
        lines = self._checked_lines(draft, client_snapshot, owner_id, existing)
        totals = compute_totals(lines, self.tax_rate)
        data = dict(
            owner_id=owner_id,
            invoice_number=invoice_number,
            client=client_snapshot.snapshot(),
            line_items=lines,
            issue_date=draft.issue_date,
            due_date=draft.due_date,
            currency=draft.currency,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            note=draft.note or None,
        )
        if existing is not None:
            data.update(id=existing.id, status=existing.status, created_at=existing.created_at)
        inv = Invoice(**data)
        if existing is not None:
            inv.touch()
        return inv

    def reconcile(
        self,
        draft: InvoiceDraft,
        client_snapshot: Optional[Client],
        owner_id: str,
        existing: Optional[Invoice] = None,
    ) -> Invoice:
        # validation avant toute écriture (et avant de consommer un numéro)
        self._checked_lines(draft, client_snapshot, owner_id, existing)
        try:
            number = existing.invoice_number if existing is not None else self.next_invoice_number(owner_id)
            inv = self.build_invoice(draft, client_snapshot, owner_id, invoice_number=number, existing=existing)
            payload = inv.model_dump(mode="json")
            if existing is not None:
                self.store.invoices.update(inv.id, payload, owner_id=owner_id)
            else:
                self.store.invoices.create(payload, owner_id=owner_id)
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Error saving invoice for %s: %s", owner_id, e)
            raise PersistenceError("Could not save the invoice.") from e
        logger.info("Invoice %s %s", inv.invoice_number, "updated" if existing else "created")
        return inv
