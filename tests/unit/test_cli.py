"""CLI tests against a SQLite database shared between invocations."""

import json
import logging

import pytest
from typer.testing import CliRunner

from invoflow.cli import app
from invoflow.logging import JsonFormatter

runner = CliRunner()


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    monkeypatch.setenv("INVOFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'cli.db'}")


def _start(*extra):
    result = runner.invoke(
        app, ["invoice", "start", "--client", "Acme", "--value", "100", *extra]
    )
    assert result.exit_code == 0, result.output
    lines = dict(line.split(": ", 1) for line in result.output.strip().splitlines())
    return lines["Instance"], lines["Invoice"]


def test_start_then_pay(db_env):
    instance_id, invoice_id = _start()

    shown = runner.invoke(app, ["instance", "show", instance_id])
    assert shown.exit_code == 0
    assert "Running" in shown.output
    assert "Waiting for: PayEvent" in shown.output

    paid = runner.invoke(app, ["invoice", "pay", instance_id])
    assert paid.exit_code == 0
    assert "Payment recorded" in paid.output

    shown = runner.invoke(app, ["instance", "show", instance_id])
    assert "Completed" in shown.output
    assert invoice_id in shown.output
    assert '"status": "Paid"' in shown.output


def test_pay_before_wait_is_buffered(db_env):
    instance_id, _ = _start("--no-drain")

    paid = runner.invoke(app, ["invoice", "pay", instance_id, "--no-drain"])
    assert "buffered" in paid.output

    shown = runner.invoke(app, ["instance", "show", instance_id])
    assert "Buffered PayEvent: 1" in shown.output


def test_list_and_history(db_env):
    instance_id, _ = _start()

    listed = runner.invoke(app, ["instance", "list", "--status", "Running"])
    assert instance_id in listed.output
    assert "InvoiceOrchestration" in listed.output

    history = runner.invoke(app, ["instance", "history", instance_id])
    assert "orchestration_started" in history.output
    assert "activity_scheduled #1 AddInvoice" in history.output

    raw = runner.invoke(app, ["instance", "history", instance_id, "--json"])
    events = json.loads(raw.output)
    assert events[0]["kind"] == "orchestration_started"
    assert [e["event_id"] for e in events] == list(range(1, len(events) + 1))


def test_unknown_instance(db_env):
    result = runner.invoke(app, ["instance", "show", "missing"])
    assert result.exit_code == 1
    assert "Instance not found" in result.output


def test_timers_fire_without_due_timers(db_env):
    _start()
    result = runner.invoke(app, ["timers", "fire"])
    assert result.exit_code == 0
    assert "Fired 0 timer(s)" in result.output


def test_worker_run_drains_queue_and_exits(db_env):
    result = runner.invoke(app, ["worker", "run", "--lifespan", "0.2"])
    assert result.exit_code == 0, result.output
    assert "Processed 0 work item(s)" in result.output


def test_json_formatter_includes_extra():
    record = logging.LogRecord("invoflow.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    record.instance_id = "abc"

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello x"
    assert payload["level"] == "INFO"
    assert payload["extra"] == {"instance_id": "abc"}
