"""Invoice lifecycle with simulated time: one invoice paid, one cancelled."""

import asyncio
from decimal import Decimal

from invoflow import ManualClock
from invoflow.config import InvoflowConfig
from invoflow.invoices import InMemoryInvoiceSink, Invoice, create_invoice_service
from invoflow.persistence.inmemory import InMemoryWorkflowRepository
from invoflow.transports.inmemory import InMemoryTransport


async def main():
    clock = ManualClock()
    sink = InMemoryInvoiceSink()
    service = create_invoice_service(
        InvoflowConfig(),
        repository=InMemoryWorkflowRepository(),
        transport=InMemoryTransport(),
        sink=sink,
        clock=clock,
    )
    runtime = service.runtime

    paid = await service.start_invoice(
        Invoice(client_name="ACME", email_address="billing@acme.test", value=Decimal("120.50"))
    )
    unpaid = await service.start_invoice(
        {"clientName": "Globex", "invoiceAddress": "1 Main St", "value": "80"}
    )
    await runtime.run_until_idle()

    clock.advance(30)
    await service.mark_paid(paid.instance_id)
    await runtime.run_until_idle()

    # Past the one minute payment window of the second invoice.
    clock.advance(31)
    await runtime.run_until_idle()

    for started in (paid, unpaid):
        status = await service.get_status(started.instance_id)
        print(f"{started.invoice_id}: {status.status.value} -> {status.output}")

    for row in await sink.rows():
        print(f"row {row.id} {row.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
