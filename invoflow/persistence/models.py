"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import FailureDetails, InstanceStatus


class WorkflowInstance(BaseModel):
    """One execution of an orchestration."""

    instance_id: str
    workflow_type: str
    input: Any = None
    status: InstanceStatus = InstanceStatus.RUNNING
    created_at: datetime
    updated_at: Optional[datetime] = None
    output: Any = None
    failure: Optional[FailureDetails] = None
    waiting_for: list[str] = Field(default_factory=list)


class BufferedEvent(BaseModel):
    """An external event raised while nothing was waiting for it."""

    buffer_id: int
    instance_id: str
    name: str
    payload: Any = None
    received_at: datetime
