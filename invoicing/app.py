from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from invoicing.config import AppSettings, load_settings
from invoicing.services.ai_client import AutofillGenerator, OpenAIAutofillGenerator
from invoicing.services.autofill_service import AutofillOrchestrator
from invoicing.services.client_service import ClientService
from invoicing.services.invoice_service import InvoiceService
from invoicing.services.product_service import ProductService
from invoicing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: AppSettings
    store: DocumentStore
    clients: ClientService
    products: ProductService
    invoices: InvoiceService


def create_services(
    settings: Optional[AppSettings] = None,
    *,
    generator: Optional[AutofillGenerator] = None,
) -> Services:
    settings = settings or load_settings()
    store = DocumentStore.from_settings(settings)

    if generator is None and settings.ai.api_key:
        generator = OpenAIAutofillGenerator.from_settings(settings)
    if generator is None:
        logger.info("No AI generator configured, autofill disabled")

    clients = ClientService(store)
    return Services(
        settings=settings,
        store=store,
        clients=clients,
        products=ProductService(store),
        invoices=InvoiceService(
            store,
            settings,
            clients=clients,
            autofill=AutofillOrchestrator(generator) if generator else None,
        ),
    )
