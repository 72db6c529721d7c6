# invoicing/services/invoice_service.py
from __future__ import annotations
import logging
import re
from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from invoicing.config import AppSettings
from invoicing.errors import AutofillInProgressError, PersistenceError, PlanLimitError, ValidationError
from invoicing.models.common import Currency
from invoicing.models.identity import Identity
from invoicing.models.invoice import Invoice, InvoiceDraft
from invoicing.services.autofill_service import AutofillOrchestrator
from invoicing.services.client_service import ClientService
from invoicing.services.draft_session import DraftSession
from invoicing.services.reconciler import InvoiceReconciler
from invoicing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


class InvoiceSummary(BaseModel):
    currency: Currency
    revenue: Decimal = Decimal("0")      # payées
    outstanding: Decimal = Decimal("0")  # en attente
    overdue: Decimal = Decimal("0")      # échues


_TRAILING_SEQ = re.compile(r"(\d+)$")


def _number_key(number: str) -> Tuple[str, int]:
    # INV-2026-100000 après INV-2026-99999
    m = _TRAILING_SEQ.search(number)
    if m is None:
        return number, -1
    return number[: m.start()], int(m.group(1))


def _hydrate(rows: Iterable[Dict[str, Any]]) -> List[Invoice]:
    out: List[Invoice] = []
    for d in rows:
        try:
            out.append(Invoice(**d))
        except PydanticValidationError:
            logger.warning("Skipping invalid invoice record %s", d.get("id"))
            continue
    return sorted(out, key=lambda inv: _number_key(inv.invoice_number))


# ---------- Service ----------
class InvoiceService:
    def __init__(
        self,
        store: DocumentStore,
        settings: AppSettings,
        *,
        clients: Optional[ClientService] = None,
        autofill: Optional[AutofillOrchestrator] = None,
    ):
        self.settings = settings
        self.collection = store.invoices
        self.clients = clients or ClientService(store)
        self.reconciler = InvoiceReconciler(
            store,
            tax_rate=settings.tax_rate,
            invoice_prefix=settings.numbering.invoice_prefix,
        )
        self.autofill_orchestrator = autofill

    # ----------- CRUD/list -----------
    def list_invoices(self, identity: Identity) -> List[Invoice]:
        return _hydrate(self.collection.list(identity.user_id))

    def get_invoice(self, identity: Identity, invoice_id: str) -> Optional[Invoice]:
        d = self.collection.get(invoice_id, owner_id=identity.user_id)
        if d is None:
            return None
        try:
            return Invoice(**d)
        except PydanticValidationError:
            return None

    def delete_invoice(self, identity: Identity, invoice_id: str) -> bool:
        try:
            return self.collection.delete(invoice_id, owner_id=identity.user_id)
        except OSError as e:
            raise PersistenceError("Failed to delete invoice.") from e

    @asynccontextmanager
    async def subscribe(self, identity: Identity) -> AsyncIterator[AsyncIterator[List[Invoice]]]:
        async with self.collection.subscribe(identity.user_id) as snapshots:
            async def invoices() -> AsyncIterator[List[Invoice]]:
                async for rows in snapshots:
                    yield _hydrate(rows)
            yield invoices()

    # ----------- limites d'offre -----------
    def ensure_can_create(self, identity: Identity) -> None:
        if identity.bypasses_plan_limits or identity.plan != "free":
            return
        limit = self.settings.free_invoice_limit
        if len(self.collection.list(identity.user_id)) >= limit:
            raise PlanLimitError(f"You've reached the {limit}-invoice limit for the Free plan.")

    # ----------- brouillons -----------
    def open_draft(self, identity: Identity, invoice_id: Optional[str] = None) -> DraftSession:
        if invoice_id:
            inv = self.get_invoice(identity, invoice_id)
            if inv is None:
                raise ValidationError(f"invoice {invoice_id} not found")
            return DraftSession(InvoiceDraft.from_invoice(inv), tax_rate=self.settings.tax_rate, existing=inv)
        self.ensure_can_create(identity)
        draft = InvoiceDraft.new(currency=self.settings.default_currency, due_days=self.settings.due_days)
        return DraftSession(draft, tax_rate=self.settings.tax_rate)

    async def autofill(self, identity: Identity, session: DraftSession) -> InvoiceDraft:
        if self.autofill_orchestrator is None:
            raise ValidationError("AI autofill is not configured")
        return await self.autofill_orchestrator.autofill(session, identity)

    def save(self, identity: Identity, session: DraftSession) -> Invoice:
        """
        Enregistre le brouillon (création ou mise à jour).
        En cas d'échec le brouillon de la session est conservé tel quel.
        """
        if session.autofill_pending:
            raise AutofillInProgressError("wait for the AI suggestions before saving")
        if session.is_new:
            self.ensure_can_create(identity)
        client_id = session.draft.client_id
        client = self.clients.get_client(identity, client_id) if client_id else None
        inv = self.reconciler.reconcile(session.draft, client, identity.user_id, existing=session.existing)
        # les enregistrements suivants mettent à jour la même facture
        session.existing = inv
        return inv

    # ----------- tableau de bord -----------
    @staticmethod
    def summarize(invoices: Iterable[Invoice]) -> Dict[str, InvoiceSummary]:
        """Totaux par devise (aucune conversion entre devises)."""
        acc: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
        field_by_status = {"paid": "revenue", "pending": "outstanding", "overdue": "overdue"}
        for inv in invoices:
            per_currency = acc[inv.currency]  # devise présente même sans montant
            key = field_by_status.get(inv.status)
            if key:
                per_currency[key] += inv.total
        return {cur: InvoiceSummary(currency=cur, **vals) for cur, vals in acc.items()}
