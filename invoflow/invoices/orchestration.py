"""The invoice lifecycle orchestration."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable

from ..constants import DEFAULT_PAY_EVENT, DEFAULT_PAYMENT_WINDOW_SECONDS, INVOICE_ORCHESTRATION
from ..context import OrchestrationContext
from ..registry import OrchestrationRegistry
from .activities import ADD_INVOICE, INVOICE_CANCELLED, INVOICE_PAID
from .models import Invoice, InvoiceStatus


def build_invoice_orchestration(
    payment_window: timedelta = timedelta(seconds=DEFAULT_PAYMENT_WINDOW_SECONDS),
    pay_event: str = DEFAULT_PAY_EVENT,
) -> Callable:
    """Create the orchestration for a given payment window and event name.

    The invoice is stored as Initiated, then the orchestration waits for
    ``pay_event`` until ``payment_window`` after that point. Whichever is
    recorded first decides between Paid and Cancelled.
    """

    def invoice_orchestration(ctx: OrchestrationContext, payload: Any):
        invoice = Invoice.model_validate(payload)
        yield ctx.call_activity(ADD_INVOICE, invoice)

        deadline = ctx.current_utc_datetime() + payment_window
        timeout = ctx.create_timer(deadline)
        paid = ctx.wait_for_event(pay_event)
        winner, _ = yield ctx.watch_first(paid, timeout)

        if winner is paid:
            ctx.trace("Invoice %s paid", invoice.id)
            yield ctx.call_activity(INVOICE_PAID, invoice)
            status = InvoiceStatus.PAID
        else:
            ctx.trace("Invoice %s not paid by %s", invoice.id, deadline.isoformat())
            yield ctx.call_activity(INVOICE_CANCELLED, invoice)
            status = InvoiceStatus.CANCELLED
        return {"invoice_id": str(invoice.id), "status": status.value}

    return invoice_orchestration


def register_invoice_orchestration(
    registry: OrchestrationRegistry,
    payment_window: timedelta = timedelta(seconds=DEFAULT_PAYMENT_WINDOW_SECONDS),
    pay_event: str = DEFAULT_PAY_EVENT,
) -> OrchestrationRegistry:
    registry.add(INVOICE_ORCHESTRATION, build_invoice_orchestration(payment_window, pay_event))
    return registry
