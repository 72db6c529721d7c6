from __future__ import annotations


class InvoicingError(Exception):
    """Base error. Every error below is recoverable: the caller keeps its draft."""


class ValidationError(InvoicingError):
    """Missing or invalid input (no client selected, empty line items...)."""


class PlanLimitError(ValidationError):
    pass


class AIResponseError(InvoicingError):
    """The generative service failed or returned out-of-contract data."""


class AutofillInProgressError(InvoicingError):
    pass


class PersistenceError(InvoicingError):
    """The document store write failed."""
