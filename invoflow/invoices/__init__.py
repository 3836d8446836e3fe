"""Invoice lifecycle workflow: created, then paid or cancelled."""

from .activities import (
    ADD_INVOICE,
    INVOICE_CANCELLED,
    INVOICE_PAID,
    register_invoice_activities,
)
from .models import Invoice, InvoiceStatus
from .orchestration import build_invoice_orchestration, register_invoice_orchestration
from .service import InvoiceService, StartedInvoice, create_invoice_service
from .sink import (
    InMemoryInvoiceSink,
    InvoiceSink,
    PostgresInvoiceSink,
    SQLiteInvoiceSink,
    get_invoice_sink,
)

__all__ = [
    "ADD_INVOICE",
    "INVOICE_PAID",
    "INVOICE_CANCELLED",
    "Invoice",
    "InvoiceStatus",
    "InvoiceService",
    "StartedInvoice",
    "InvoiceSink",
    "InMemoryInvoiceSink",
    "SQLiteInvoiceSink",
    "PostgresInvoiceSink",
    "build_invoice_orchestration",
    "register_invoice_activities",
    "register_invoice_orchestration",
    "create_invoice_service",
    "get_invoice_sink",
]
