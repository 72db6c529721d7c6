"""Tests for the invoice service: drafts, saving, plan limits, dashboard summary."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from invoicing.errors import AutofillInProgressError, PlanLimitError, ValidationError
from invoicing.models.identity import ADMIN_IDENTITY, Identity
from invoicing.services.autofill_service import AutofillOrchestrator
from invoicing.services.client_service import ClientService
from invoicing.services.invoice_service import InvoiceService


@pytest.fixture
def service(store, settings):
    return InvoiceService(store, settings)


def _fill(session, draft):
    session.draft = draft.model_copy(deep=True)
    return session


def test_open_draft_uses_defaults(service, identity):
    session = service.open_draft(identity)
    draft = session.draft

    assert session.is_new
    assert draft.client_id == ""
    assert draft.currency == "EUR"
    assert draft.due_date == draft.issue_date + timedelta(days=30)
    assert len(draft.line_items) == 1
    assert draft.line_items[0].quantity == 1
    assert session.totals().total == 0


def test_save_then_save_again_updates_the_same_invoice(service, identity, draft):
    session = _fill(service.open_draft(identity), draft)

    first = service.save(identity, session)
    session.draft.note = "Updated terms."
    second = service.save(identity, session)

    assert second.id == first.id
    assert second.invoice_number == first.invoice_number
    assert second.note == "Updated terms."
    assert len(service.list_invoices(identity)) == 1


def test_saving_without_client_keeps_the_draft(service, identity):
    session = service.open_draft(identity)
    draft = session.draft

    with pytest.raises(ValidationError, match="client must be selected"):
        service.save(identity, session)

    assert session.draft is draft
    assert session.is_new
    assert service.list_invoices(identity) == []


def test_editing_existing_invoice_keeps_its_number(service, identity, draft):
    inv = service.save(identity, _fill(service.open_draft(identity), draft))

    session = service.open_draft(identity, inv.id)
    assert not session.is_new
    assert [i.description for i in session.draft.line_items] == [
        "Web Design Consultation",
        "Frontend Development",
    ]

    session.ledger.remove_item(1)
    updated = service.save(identity, session)

    assert updated.invoice_number == inv.invoice_number
    assert updated.total == Decimal("369")


def test_open_unknown_invoice(service, identity):
    with pytest.raises(ValidationError):
        service.open_draft(identity, "missing")


def test_invoices_of_another_user_are_invisible(service, identity, other_identity, draft):
    inv = service.save(identity, _fill(service.open_draft(identity), draft))

    assert service.get_invoice(other_identity, inv.id) is None
    assert service.list_invoices(other_identity) == []
    assert service.delete_invoice(other_identity, inv.id) is False
    with pytest.raises(ValidationError):
        service.open_draft(other_identity, inv.id)


def test_delete_invoice(service, identity, draft):
    inv = service.save(identity, _fill(service.open_draft(identity), draft))

    assert service.delete_invoice(identity, inv.id) is True
    assert service.get_invoice(identity, inv.id) is None


def test_free_plan_limit(store, settings, identity, draft):
    service = InvoiceService(store, settings.model_copy(update={"free_invoice_limit": 1}))
    service.save(identity, _fill(service.open_draft(identity), draft))

    with pytest.raises(PlanLimitError, match="1-invoice limit"):
        service.open_draft(identity)


def test_plan_limit_is_checked_again_at_save(store, settings, identity, draft):
    service = InvoiceService(store, settings.model_copy(update={"free_invoice_limit": 1}))
    pending = _fill(service.open_draft(identity), draft)
    service.save(identity, _fill(service.open_draft(identity), draft))

    with pytest.raises(PlanLimitError):
        service.save(identity, pending)


def test_editing_is_allowed_at_the_limit(store, settings, identity, draft):
    service = InvoiceService(store, settings.model_copy(update={"free_invoice_limit": 1}))
    inv = service.save(identity, _fill(service.open_draft(identity), draft))

    session = service.open_draft(identity, inv.id)
    assert service.save(identity, session).id == inv.id


def test_admin_and_paid_plans_bypass_the_limit(store, settings, draft, client):
    service = InvoiceService(store, settings.model_copy(update={"free_invoice_limit": 0}))
    pro = Identity(user_id=client.owner_id, plan="pro")

    service.ensure_can_create(ADMIN_IDENTITY)
    service.ensure_can_create(pro)
    service.save(pro, _fill(service.open_draft(pro), draft))


def test_client_changes_do_not_alter_saved_invoices(store, service, identity, client, draft):
    inv = service.save(identity, _fill(service.open_draft(identity), draft))
    clients = ClientService(store)

    clients.update_client(identity, client.model_copy(update={"name": "Renamed Ltd."}))
    clients.delete_client(identity, client.id)

    reloaded = service.get_invoice(identity, inv.id)
    assert reloaded.client.name == "Tech Solutions Ltd."
    assert reloaded.total == inv.total


def test_subscribe_streams_invoice_lists(service, identity, draft):
    async def scenario():
        async with service.subscribe(identity) as stream:
            initial = await stream.__anext__()
            service.save(identity, _fill(service.open_draft(identity), draft))
            after_save = await stream.__anext__()
        return initial, after_save

    initial, after_save = asyncio.run(scenario())

    assert initial == []
    assert len(after_save) == 1
    assert after_save[0].total == 2829


def test_summarize_groups_by_currency_and_status(service, identity, draft):
    eur = service.save(identity, _fill(service.open_draft(identity), draft))
    usd_draft = draft.model_copy(update={"currency": "USD"}, deep=True)
    usd = service.save(identity, _fill(service.open_draft(identity), usd_draft))

    invoices = [
        eur.model_copy(update={"status": "paid"}),
        eur.model_copy(update={"status": "pending"}),
        usd.model_copy(update={"status": "overdue"}),
        usd.model_copy(update={"status": "draft"}),
    ]
    summary = InvoiceService.summarize(invoices)

    assert set(summary) == {"EUR", "USD"}
    assert summary["EUR"].revenue == 2829
    assert summary["EUR"].outstanding == 2829
    assert summary["EUR"].overdue == 0
    assert summary["USD"].overdue == 2829
    assert summary["USD"].revenue == 0


def test_autofill_requires_configuration(service, identity, draft):
    session = _fill(service.open_draft(identity), draft)

    with pytest.raises(ValidationError, match="not configured"):
        asyncio.run(service.autofill(identity, session))


def test_autofill_then_save(store, settings, identity, draft, fake_generator):
    gen = fake_generator(response={
        "suggested_items": [{"description": "Maintenance", "quantity": 3, "unit_price": 100}],
        "suggested_note": "Net 30.",
    })
    service = InvoiceService(store, settings, autofill=AutofillOrchestrator(gen))
    session = _fill(service.open_draft(identity), draft)

    asyncio.run(service.autofill(identity, session))
    inv = service.save(identity, session)

    assert [i.description for i in inv.line_items] == ["Maintenance"]
    assert inv.subtotal == 300
    assert inv.note == "Net 30."


def test_save_waits_for_pending_autofill(store, settings, identity, draft, fake_generator):
    gen = fake_generator(response={
        "suggested_items": [{"description": "Maintenance", "quantity": 1, "unit_price": 100}],
        "suggested_note": "",
    })
    service = InvoiceService(store, settings, autofill=AutofillOrchestrator(gen))
    session = _fill(service.open_draft(identity), draft)

    async def scenario():
        gen.gate = asyncio.Event()
        task = asyncio.create_task(service.autofill(identity, session))
        await asyncio.sleep(0)
        with pytest.raises(AutofillInProgressError):
            service.save(identity, session)
        gen.gate.set()
        await task

    asyncio.run(scenario())

    assert service.save(identity, session).subtotal == 100


def test_invoices_are_listed_by_numeric_sequence(store, service, identity, draft):
    first = service.save(identity, _fill(service.open_draft(identity), draft))
    second = service.save(identity, _fill(service.open_draft(identity), draft))
    store.invoices.update(first.id, {"invoice_number": "INV-2026-100000"}, owner_id=identity.user_id)
    store.invoices.update(second.id, {"invoice_number": "INV-2026-99999"}, owner_id=identity.user_id)

    numbers = [inv.invoice_number for inv in service.list_invoices(identity)]

    assert numbers == ["INV-2026-99999", "INV-2026-100000"]
