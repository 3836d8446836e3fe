"""Invoice activities: each writes one invoice row with a given status."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from ..activities import ActivityContext
from ..registry import ActivityRegistry
from .models import Invoice, InvoiceStatus
from .sink import InvoiceSink

logger = logging.getLogger(__name__)

ADD_INVOICE = "AddInvoice"
INVOICE_PAID = "InvoicePaid"
INVOICE_CANCELLED = "InvoiceCancelled"


async def persist_invoice(sink: InvoiceSink, invoice: Invoice) -> Dict[str, Any]:
    """Append and flush one row; safe to repeat for the same invoice and status."""
    inserted = await sink.append(invoice)
    await sink.flush()
    if not inserted:
        logger.info(f"Invoice {invoice.id} already stored as {invoice.status.value}")
    return {"invoice_id": str(invoice.id), "status": invoice.status.value}


def _status_activity(sink: InvoiceSink, status: InvoiceStatus | None) -> Callable:
    async def activity(ctx: ActivityContext, payload: Any) -> Dict[str, Any]:
        invoice = Invoice.model_validate(payload)
        if status is not None:
            invoice = invoice.with_status(status)
        logger.info(
            f"{ctx.name}: invoice {invoice.id} -> {invoice.status.value} (instance={ctx.instance_id})"
        )
        return await persist_invoice(sink, invoice)

    return activity


def register_invoice_activities(
    registry: ActivityRegistry, sink: InvoiceSink
) -> ActivityRegistry:
    """Register ``AddInvoice``, ``InvoicePaid`` and ``InvoiceCancelled``."""
    registry.add(ADD_INVOICE, _status_activity(sink, None))
    registry.add(INVOICE_PAID, _status_activity(sink, InvoiceStatus.PAID))
    registry.add(INVOICE_CANCELLED, _status_activity(sink, InvoiceStatus.CANCELLED))
    return registry
