"""Invoice sinks and activities."""

import uuid
from decimal import Decimal

import pytest

from invoflow.activities import ActivityContext, ActivityRunner
from invoflow.errors import PersistenceFailure
from invoflow.invoices import (
    ADD_INVOICE,
    INVOICE_CANCELLED,
    INVOICE_PAID,
    InMemoryInvoiceSink,
    Invoice,
    InvoiceStatus,
    SQLiteInvoiceSink,
    get_invoice_sink,
    register_invoice_activities,
)
from invoflow.registry import ActivityRegistry


def _invoice(**overrides):
    data = {"clientName": "Acme", "emailAddress": "a@acme.test", "value": "100"}
    data.update(overrides)
    return Invoice.model_validate(data)


def test_invoice_accepts_camel_case_and_snake_case():
    camel = _invoice()
    snake = Invoice(client_name="Acme", email_address="a@acme.test", value=Decimal("100"))

    assert camel.client_name == snake.client_name == "Acme"
    assert camel.value == Decimal("100")
    assert camel.status is InvoiceStatus.INITIATED
    assert camel.with_status(InvoiceStatus.PAID).status is InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_inmemory_sink_dedups_on_id_and_status():
    sink = InMemoryInvoiceSink()
    invoice = _invoice()

    assert await sink.append(invoice)
    assert not await sink.append(invoice)
    assert await sink.append(invoice.with_status(InvoiceStatus.PAID))

    rows = await sink.rows(str(invoice.id))
    assert [r.status for r in rows] == [InvoiceStatus.INITIATED, InvoiceStatus.PAID]
    assert len(sink.append_calls) == 3


@pytest.mark.asyncio
async def test_sqlite_sink_roundtrip(tmp_path):
    sink = SQLiteInvoiceSink(tmp_path / "invoices.db")
    invoice = _invoice(value="12.34")

    assert await sink.append(invoice)
    assert not await sink.append(invoice)
    await sink.flush()

    rows = await sink.rows(str(invoice.id))
    assert len(rows) == 1
    assert rows[0].id == invoice.id
    assert rows[0].value == Decimal("12.34")
    assert rows[0].email_address == "a@acme.test"


@pytest.mark.asyncio
async def test_sqlite_sink_errors_are_persistence_failures(tmp_path):
    sink = SQLiteInvoiceSink(tmp_path / "invoices.db")
    sink._conn.close()

    with pytest.raises(PersistenceFailure):
        await sink.append(_invoice())


def test_get_invoice_sink_backends(tmp_path):
    assert isinstance(get_invoice_sink(), InMemoryInvoiceSink)
    assert isinstance(get_invoice_sink(f"sqlite://{tmp_path / 'i.db'}"), SQLiteInvoiceSink)
    with pytest.raises(ValueError):
        get_invoice_sink("mysql://nope")


@pytest.mark.asyncio
async def test_invoice_activities_set_status():
    sink = InMemoryInvoiceSink()
    runner = ActivityRunner(register_invoice_activities(ActivityRegistry(), sink))
    invoice = _invoice(id=str(uuid.uuid4()))
    payload = invoice.model_dump(mode="json")

    ctx = ActivityContext(instance_id="i", sequence_no=1, name=ADD_INVOICE)
    added = await runner.invoke(ADD_INVOICE, payload, ctx)
    paid = await runner.invoke(INVOICE_PAID, payload)
    cancelled = await runner.invoke(INVOICE_CANCELLED, payload)

    assert added == {"invoice_id": str(invoice.id), "status": "Initiated"}
    assert paid["status"] == "Paid"
    assert cancelled["status"] == "Cancelled"
    assert len(await sink.rows(str(invoice.id))) == 3
