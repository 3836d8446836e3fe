from __future__ import annotations

import os
from datetime import timedelta
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_ACTIVITY_TOPIC,
    DEFAULT_PAY_EVENT,
    DEFAULT_PAYMENT_WINDOW_SECONDS,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class InvoiceConfig(BaseModel):
    """Settings for the invoice orchestration."""

    payment_window_seconds: float = DEFAULT_PAYMENT_WINDOW_SECONDS
    pay_event: str = DEFAULT_PAY_EVENT

    @property
    def payment_window(self) -> timedelta:
        return timedelta(seconds=self.payment_window_seconds)


class WorkerConfig(BaseModel):
    """Settings for long-running workers."""

    activity_topic: str = DEFAULT_ACTIVITY_TOPIC
    poll_interval: float = 0.1
    timer_interval: float = 1.0


class InvoflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    invoice: InvoiceConfig = InvoiceConfig()
    worker: WorkerConfig = WorkerConfig()


def load_config(path: Optional[str] = None) -> InvoflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to INVOFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("INVOFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = InvoflowConfig(**data)
    else:
        config = InvoflowConfig()

    env_db_url = os.getenv("INVOFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
