"""Tests for configuration loading."""

from datetime import timedelta

from invoflow.config import load_config
from invoflow.persistence import get_repository
from invoflow.persistence.sqlite import SQLiteWorkflowRepository
from invoflow.transports import get_transport
from invoflow.transports.inmemory import InMemoryTransport
from invoflow.transports.redis import RedisTransport


def test_defaults_without_config_file():
    config = load_config()

    assert config.transport.backend == "inmemory"
    assert config.database_url is None
    assert config.invoice.pay_event == "PayEvent"
    assert config.invoice.payment_window == timedelta(minutes=1)


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
invoice:
  payment_window_seconds: 5
worker:
  activity_topic: invoices
"""
    )
    monkeypatch.setenv("INVOFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.invoice.payment_window == timedelta(seconds=5)
    assert config.worker.activity_topic == "invoices"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("INVOFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")

    config = load_config(str(config_path))
    assert config.database_url == f"sqlite://{tmp_path / 'env.db'}"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("INVOFLOW_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_transport_env_override(monkeypatch):
    monkeypatch.setenv("INVOFLOW_TRANSPORT", "inmemory")
    assert isinstance(get_transport(), InMemoryTransport)


def test_get_repository_selects_sqlite(tmp_path):
    repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(repo, SQLiteWorkflowRepository)
    repo.close()
