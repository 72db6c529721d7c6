from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Tuple

import pytest

from invoicing.config import AppSettings, BackupSettings
from invoicing.models.autofill import AutofillRequest
from invoicing.models.client import Client
from invoicing.models.identity import Identity
from invoicing.models.invoice import DraftLineItem, InvoiceDraft
from invoicing.services.client_service import ClientService
from invoicing.storage.document_store import DocumentStore


class FakeGenerator:
    """Stand-in for the generative-text service."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None) -> None:
        self.response = response
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[AutofillRequest, str]] = []

    async def generate(self, request: AutofillRequest, template: str) -> Any:
        self.calls.append((request, template))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_generator():
    return FakeGenerator


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(data_dir=tmp_path / "data", backup=BackupSettings(enabled=False))


@pytest.fixture
def store(settings) -> DocumentStore:
    return DocumentStore.from_settings(settings)


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id="user-1", display_name="Alex Doe", email="alex.doe@example.com")


@pytest.fixture
def other_identity() -> Identity:
    return Identity(user_id="user-2", display_name="Sam Roe", email="sam.roe@example.com")


@pytest.fixture
def client(store, identity) -> Client:
    return ClientService(store).add_client(
        identity,
        {
            "name": "Tech Solutions Ltd.",
            "email": "contact@techsolutions.com",
            "address": "1 Grand Canal Square, Dublin 2",
            "country": "Ireland",
            "vat_id": "IE1234567T",
        },
    )


@pytest.fixture
def draft(client) -> InvoiceDraft:
    return InvoiceDraft(
        client_id=client.id,
        line_items=[
            DraftLineItem(description="Web Design Consultation", quantity=2, unit_price=150),
            DraftLineItem(description="Frontend Development", quantity=25, unit_price=80),
        ],
        note="Thank you for your business.",
    )
