"""Shared fixtures: an invoice service wired to in-memory collaborators."""

import pytest

from invoflow import ManualClock
from invoflow.config import InvoflowConfig
from invoflow.invoices import InMemoryInvoiceSink, create_invoice_service
from invoflow.persistence.inmemory import InMemoryWorkflowRepository
from invoflow.transports.inmemory import InMemoryTransport


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sink():
    return InMemoryInvoiceSink()


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport():
    return InMemoryTransport(poll_interval=0.01)


@pytest.fixture
def service(clock, sink, repository, transport):
    return create_invoice_service(
        InvoflowConfig(),
        repository=repository,
        transport=transport,
        sink=sink,
        clock=clock,
    )


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for name in ("INVOFLOW_CONFIG", "INVOFLOW_DATABASE_URL", "DATABASE_URL", "INVOFLOW_TRANSPORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("INVOFLOW_CONFIG", str(tmp_path / "missing.yaml"))
