"""Command line interface for invoflow."""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Optional

import typer

from invoflow.config import load_config
from invoflow.contracts import InstanceStatus, to_payload
from invoflow.errors import InstanceNotFound, InvoflowError
from invoflow.invoices import Invoice, InvoiceService, create_invoice_service
from invoflow.logging import configure_logging
from invoflow.worker import ActivityWorker

app = typer.Typer(help="CLI for invoflow orchestrations")

# Command groups
invoice_app = typer.Typer(help="Start and pay invoices")
instance_app = typer.Typer(help="Inspect orchestration instances")
timers_app = typer.Typer(help="Durable timer maintenance")
worker_app = typer.Typer(help="Run activity workers")

app.add_typer(invoice_app, name="invoice")
app.add_typer(instance_app, name="instance")
app.add_typer(timers_app, name="timers")
app.add_typer(worker_app, name="worker")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Root log level"),
    json_logs: bool = typer.Option(False, "--json", help="Emit logs as JSON lines"),
) -> None:
    """invoflow CLI entry point."""
    configure_logging(log_level, json_output=json_logs)


def _service(config_path: Optional[str] = None) -> InvoiceService:
    return create_invoice_service(load_config(config_path))


def _echo_json(value) -> None:
    typer.echo(json.dumps(to_payload(value), indent=2, default=str))


@invoice_app.command("start")
def invoice_start(
    client: str = typer.Option(..., "--client", help="Client name"),
    value: str = typer.Option(..., "--value", help="Invoice amount"),
    email: Optional[str] = typer.Option(None, "--email"),
    address: Optional[str] = typer.Option(None, "--address"),
    drain: bool = typer.Option(
        True, help="Run queued activities in this process before exiting"
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """
    Start an invoice orchestration.

    Example:
        invoflow invoice start --client "ACME" --value 120.50
        # Output: Instance: 3f1c...
        #         Invoice: 9a7e...
    """
    service = _service(config)
    invoice = Invoice(
        client_name=client,
        email_address=email,
        invoice_address=address,
        value=Decimal(value),
    )

    async def _run():
        started = await service.start_invoice(invoice)
        if drain:
            await service.runtime.process_activities()
        return started

    started = asyncio.run(_run())
    typer.echo(f"Instance: {started.instance_id}")
    typer.echo(f"Invoice: {started.invoice_id}")


@invoice_app.command("pay")
def invoice_pay(
    instance_id: str,
    drain: bool = typer.Option(
        True, help="Run queued activities in this process before exiting"
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """Raise the payment event for the invoice run by ``instance_id``."""
    service = _service(config)

    async def _run() -> bool:
        delivered = await service.mark_paid(instance_id)
        if drain:
            await service.runtime.process_activities()
        return delivered

    try:
        delivered = asyncio.run(_run())
    except InstanceNotFound:
        typer.secho("Instance not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if delivered:
        typer.echo("Payment recorded")
    else:
        typer.echo("Payment buffered; the instance is not waiting for it")


@instance_app.command("list")
def instance_list(
    status: Optional[InstanceStatus] = typer.Option(None, "--status"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """
    List instances with their current status.

    Example:
        invoflow instance list --status Running
        # Output: abc123-def456-789    InvoiceOrchestration    Running
    """
    service = _service(config)
    instances = asyncio.run(service.instances.list_instances(status))
    if not instances:
        typer.echo("No instances found")
        return
    for inst in instances:
        typer.echo(f"{inst.instance_id}\t{inst.workflow_type}\t{inst.status.value}")


@instance_app.command("show")
def instance_show(
    instance_id: str,
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """Show status, output, failure and buffered events of one instance."""
    service = _service(config)
    try:
        view = asyncio.run(service.get_status(instance_id))
    except InstanceNotFound:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    typer.echo(f"Instance {view.instance_id}: {view.status.value}")
    typer.echo(f"Type: {view.workflow_type}")
    if view.waiting_for:
        typer.echo(f"Waiting for: {', '.join(view.waiting_for)}")
    if view.output is not None:
        typer.echo(f"Output: {json.dumps(view.output, default=str)}")
    if view.failure is not None:
        typer.echo(f"Failure: {view.failure.error_type}: {view.failure.message}")
    for name, payloads in view.pending_events.items():
        typer.echo(f"Buffered {name}: {len(payloads)}")


@instance_app.command("history")
def instance_history(
    instance_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print raw events"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """Print the recorded history of one instance in append order."""
    service = _service(config)
    try:
        events = asyncio.run(service.instances.get_history(instance_id))
    except InstanceNotFound:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    if as_json:
        _echo_json([e.model_dump(mode="json") for e in events])
        return
    for event in events:
        detail = getattr(event, "name", None) or getattr(event, "workflow_type", "")
        seq = getattr(event, "sequence_no", None)
        seq_text = f" #{seq}" if seq is not None else ""
        typer.echo(f"{event.event_id:>4} {event.kind}{seq_text} {detail}".rstrip())


@timers_app.command("fire")
def timers_fire(
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """Fire every due timer once and run the activities that follow."""
    service = _service(config)

    async def _run() -> int:
        fired = await service.runtime.fire_due_timers()
        await service.runtime.process_activities()
        return fired

    fired = asyncio.run(_run())
    typer.echo(f"Fired {fired} timer(s)")


@worker_app.command("run")
def worker_run(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
    redispatch: Optional[bool] = typer.Option(
        None,
        "--redispatch/--no-redispatch",
        help="Re-publish pending activities on startup (default: only for non-durable transports)",
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """
    Run a worker that executes invoice activities and fires due timers.

    Example:
        invoflow worker run --lifespan 300
    """
    cfg = load_config(config)
    service = create_invoice_service(cfg)
    worker = ActivityWorker(
        service.runtime, timer_interval=cfg.worker.timer_interval, redispatch=redispatch
    )
    typer.echo(f"Starting worker on topic: {cfg.worker.activity_topic}")
    try:
        asyncio.run(worker.start(lifespan=lifespan))
    except InvoflowError as e:
        typer.secho(f"Worker stopped: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Processed {worker.processed} work item(s)")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
