"""Entry points used by the (external) HTTP layer for invoices."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..clock import Clock
from ..config import InvoflowConfig, load_config
from ..constants import INVOICE_ORCHESTRATION
from ..instances import InstanceManager, InstanceStatusView
from ..persistence import get_repository
from ..persistence.repository import WorkflowRepository
from ..registry import ActivityRegistry, OrchestrationRegistry
from ..runtime import OrchestrationRuntime
from ..transports import BaseTransport, get_transport
from .activities import register_invoice_activities
from .models import Invoice, InvoiceStatus
from .orchestration import register_invoice_orchestration
from .sink import InvoiceSink, get_invoice_sink

logger = logging.getLogger(__name__)


class StartedInvoice(BaseModel):
    """Handle returned when an invoice workflow starts."""

    instance_id: str
    invoice_id: str


class InvoiceService:
    """Starts invoice workflows and forwards payment notifications."""

    def __init__(
        self,
        runtime: OrchestrationRuntime,
        sink: InvoiceSink,
        pay_event: str,
    ) -> None:
        self.runtime = runtime
        self.instances = InstanceManager(runtime)
        self.sink = sink
        self.pay_event = pay_event

    async def start_invoice(self, data: Invoice | Dict[str, Any]) -> StartedInvoice:
        """Assign a new invoice id and start its orchestration."""
        invoice = data if isinstance(data, Invoice) else Invoice.model_validate(data)
        invoice = invoice.model_copy(
            update={"id": uuid.uuid4(), "status": InvoiceStatus.INITIATED}
        )
        instance_id = await self.instances.create_instance(INVOICE_ORCHESTRATION, invoice)
        return StartedInvoice(instance_id=instance_id, invoice_id=str(invoice.id))

    async def mark_paid(self, instance_id: str) -> bool:
        """Signal that the invoice of ``instance_id`` was paid."""
        return await self.instances.raise_event(instance_id, self.pay_event, True)

    async def get_status(self, instance_id: str) -> InstanceStatusView:
        return await self.instances.get_status(instance_id)


def create_invoice_service(
    config: Optional[InvoflowConfig] = None,
    *,
    repository: Optional[WorkflowRepository] = None,
    transport: Optional[BaseTransport] = None,
    sink: Optional[InvoiceSink] = None,
    clock: Optional[Clock] = None,
) -> InvoiceService:
    """Wire repository, transport, sink and registries from configuration."""
    config = config or load_config()
    repository = repository or get_repository(config=config)
    transport = transport or get_transport(config=config)
    sink = sink or get_invoice_sink(config=config)

    orchestrations = register_invoice_orchestration(
        OrchestrationRegistry(),
        payment_window=config.invoice.payment_window,
        pay_event=config.invoice.pay_event,
    )
    activities = register_invoice_activities(ActivityRegistry(), sink)
    runtime = OrchestrationRuntime(
        repository,
        transport,
        orchestrations,
        activities,
        clock=clock,
        activity_topic=config.worker.activity_topic,
    )
    return InvoiceService(runtime, sink, pay_event=config.invoice.pay_event)
