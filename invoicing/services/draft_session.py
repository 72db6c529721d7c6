from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Optional

from invoicing.models.invoice import Invoice, InvoiceDraft
from invoicing.services.ledger import Ledger, Totals


class DraftSession:
    """
    État d'édition d'un brouillon (remplace l'état du formulaire).
    - `ledger` opère directement sur draft.line_items
    - un seul autofill en vol à la fois
    - après close(), les réponses tardives ne sont plus appliquées
    """

    def __init__(self, draft: InvoiceDraft, *, tax_rate: Decimal, existing: Optional[Invoice] = None) -> None:
        self.draft = draft
        self.tax_rate = tax_rate
        self.existing = existing
        self.autofill_lock = asyncio.Lock()
        self._closed = False

    @property
    def ledger(self) -> Ledger:
        return Ledger(self.draft.line_items, tax_rate=self.tax_rate)

    def totals(self) -> Totals:
        return self.ledger.totals()

    @property
    def is_new(self) -> bool:
        return self.existing is None

    @property
    def autofill_pending(self) -> bool:
        return self.autofill_lock.locked()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
