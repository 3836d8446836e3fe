"""Shared defaults for invoflow."""

DEFAULT_ACTIVITY_TOPIC = "activities"
DEFAULT_PAY_EVENT = "PayEvent"
DEFAULT_PAYMENT_WINDOW_SECONDS = 60
INVOICE_ORCHESTRATION = "InvoiceOrchestration"
