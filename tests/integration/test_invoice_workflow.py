"""End-to-end invoice lifecycle with simulated time."""

from decimal import Decimal

import pytest

from invoflow.contracts import (
    ActivityScheduled,
    ExternalEventReceived,
    InstanceStatus,
    TimerCancelled,
    TimerFired,
)
from invoflow.errors import InstanceNotFound, OrchestrationNotRegistered
from invoflow.invoices import Invoice, InvoiceStatus

INVOICE = {"clientName": "Acme", "value": 100}


def _scheduled_names(history):
    return [e.name for e in history if isinstance(e, ActivityScheduled)]


async def _statuses(sink, invoice_id):
    return [row.status for row in await sink.rows(invoice_id)]


@pytest.mark.asyncio
async def test_paid_before_deadline(service, sink, clock):
    started = await service.start_invoice(INVOICE)
    await service.mark_paid(started.instance_id)
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.status is InstanceStatus.COMPLETED
    assert status.output == {"invoice_id": started.invoice_id, "status": "Paid"}
    assert await _statuses(sink, started.invoice_id) == [InvoiceStatus.INITIATED, InvoiceStatus.PAID]
    assert [c.status for c in sink.append_calls] == [InvoiceStatus.INITIATED, InvoiceStatus.PAID]

    history = await service.instances.get_history(started.instance_id)
    assert _scheduled_names(history) == ["AddInvoice", "InvoicePaid"]
    assert any(isinstance(e, TimerCancelled) for e in history)

    # The cancelled deadline never fires.
    clock.advance(120)
    assert await service.runtime.fire_due_timers() == 0
    assert len(await service.instances.get_history(started.instance_id)) == len(history)


@pytest.mark.asyncio
async def test_cancelled_after_deadline(service, sink, clock):
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()

    clock.advance(59)
    await service.runtime.run_until_idle()
    assert (await service.get_status(started.instance_id)).status is InstanceStatus.RUNNING

    clock.advance(1)
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.status is InstanceStatus.COMPLETED
    assert status.output["status"] == "Cancelled"
    assert await _statuses(sink, started.invoice_id) == [
        InvoiceStatus.INITIATED,
        InvoiceStatus.CANCELLED,
    ]


@pytest.mark.asyncio
async def test_late_payment_is_retained_not_applied(service, sink, clock):
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()
    clock.advance(61)
    await service.runtime.run_until_idle()
    before = await service.instances.get_history(started.instance_id)

    delivered = await service.mark_paid(started.instance_id)
    await service.runtime.run_until_idle()

    assert delivered is False
    status = await service.get_status(started.instance_id)
    assert status.output["status"] == "Cancelled"
    assert status.pending_events == {"PayEvent": [True]}
    assert len(await service.instances.get_history(started.instance_id)) == len(before)


@pytest.mark.asyncio
async def test_duplicate_payment_before_wait_consumes_first_only(service, sink):
    started = await service.start_invoice(INVOICE)

    # AddInvoice has not completed yet, so nothing is waiting for the event.
    assert await service.mark_paid(started.instance_id) is False
    assert await service.mark_paid(started.instance_id) is False
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.output["status"] == "Paid"
    assert status.pending_events == {"PayEvent": [True]}

    history = await service.instances.get_history(started.instance_id)
    assert len([e for e in history if isinstance(e, ExternalEventReceived)]) == 1
    assert _scheduled_names(history) == ["AddInvoice", "InvoicePaid"]
    assert [c.status for c in sink.append_calls].count(InvoiceStatus.PAID) == 1


@pytest.mark.asyncio
async def test_event_recorded_before_timer_wins_past_deadline(service, sink, clock):
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()

    # Deadline has passed but the timer has not been recorded yet.
    clock.advance(90)
    assert await service.mark_paid(started.instance_id) is True
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.output["status"] == "Paid"
    history = await service.instances.get_history(started.instance_id)
    assert not any(isinstance(e, TimerFired) for e in history)


@pytest.mark.asyncio
async def test_timer_recorded_before_event_wins(service, sink, clock):
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()

    clock.advance(60)
    assert await service.runtime.fire_due_timers() == 1
    await service.mark_paid(started.instance_id)
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.output["status"] == "Cancelled"


@pytest.mark.asyncio
async def test_start_invoice_assigns_fresh_id(service):
    supplied = Invoice(client_name="Acme", value=Decimal("1"), status=InvoiceStatus.PAID)
    started = await service.start_invoice(supplied)

    assert started.invoice_id != str(supplied.id)
    view = await service.get_status(started.instance_id)
    assert view.status is InstanceStatus.RUNNING


@pytest.mark.asyncio
async def test_unknown_instance_and_workflow(service):
    with pytest.raises(InstanceNotFound):
        await service.mark_paid("missing")
    with pytest.raises(OrchestrationNotRegistered):
        await service.instances.create_instance("NoSuchWorkflow", {})
    assert await service.instances.list_instances() == []


@pytest.mark.asyncio
async def test_failing_sink_fails_instance(service, sink):
    async def broken_append(invoice):
        raise RuntimeError("disk full")

    sink.append = broken_append
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()

    status = await service.get_status(started.instance_id)
    assert status.status is InstanceStatus.FAILED
    assert status.failure.error_type == "ActivityFailure"
    assert "disk full" in status.failure.message


@pytest.mark.asyncio
async def test_instance_lock_released_once_finished(service, clock):
    started = await service.start_invoice(INVOICE)
    await service.runtime.run_until_idle()
    assert started.instance_id in service.runtime._locks

    await service.mark_paid(started.instance_id)
    await service.runtime.run_until_idle()
    assert (await service.get_status(started.instance_id)).status is InstanceStatus.COMPLETED
    assert started.instance_id not in service.runtime._locks

    # Late traffic for a finished instance does not bring the lock back.
    await service.mark_paid(started.instance_id)
    assert started.instance_id not in service.runtime._locks
