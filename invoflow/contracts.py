"""Core records of the orchestration system: history events and work items."""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStatus(str, Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.RUNNING


class FailureDetails(BaseModel):
    """Serializable description of an exception."""

    error_type: str
    message: str
    details: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureDetails":
        return cls(
            error_type=type(exc).__name__,
            message=str(exc),
            details="".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        )


class _HistoryEventBase(BaseModel):
    # Assigned by the repository on append; 0 means "not yet appended".
    event_id: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)


class OrchestrationStarted(_HistoryEventBase):
    kind: Literal["orchestration_started"] = "orchestration_started"
    workflow_type: str
    input: Any = None


class ActivityScheduled(_HistoryEventBase):
    kind: Literal["activity_scheduled"] = "activity_scheduled"
    sequence_no: int
    name: str
    input: Any = None


class ActivityCompleted(_HistoryEventBase):
    kind: Literal["activity_completed"] = "activity_completed"
    sequence_no: int
    result: Any = None
    failure: Optional[FailureDetails] = None


class TimerCreated(_HistoryEventBase):
    kind: Literal["timer_created"] = "timer_created"
    sequence_no: int
    fire_at: datetime


class TimerFired(_HistoryEventBase):
    kind: Literal["timer_fired"] = "timer_fired"
    sequence_no: int


class TimerCancelled(_HistoryEventBase):
    kind: Literal["timer_cancelled"] = "timer_cancelled"
    sequence_no: int
    timer_sequence_no: int


class TimeRecorded(_HistoryEventBase):
    kind: Literal["time_recorded"] = "time_recorded"
    sequence_no: int
    value: datetime


class ExternalEventReceived(_HistoryEventBase):
    kind: Literal["external_event_received"] = "external_event_received"
    name: str
    payload: Any = None


class OrchestrationCompleted(_HistoryEventBase):
    kind: Literal["orchestration_completed"] = "orchestration_completed"
    output: Any = None


class OrchestrationFailed(_HistoryEventBase):
    kind: Literal["orchestration_failed"] = "orchestration_failed"
    failure: FailureDetails


HistoryEvent = Annotated[
    Union[
        OrchestrationStarted,
        ActivityScheduled,
        ActivityCompleted,
        TimerCreated,
        TimerFired,
        TimerCancelled,
        TimeRecorded,
        ExternalEventReceived,
        OrchestrationCompleted,
        OrchestrationFailed,
    ],
    Field(discriminator="kind"),
]

# Events that consume a sequence number when the orchestration makes them.
DECISION_TYPES = (ActivityScheduled, TimerCreated, TimerCancelled, TimeRecorded)

HISTORY_EVENT_ADAPTER: TypeAdapter = TypeAdapter(HistoryEvent)
HISTORY_ADAPTER: TypeAdapter = TypeAdapter(List[HistoryEvent])


def parse_history_event(data: str | bytes | Dict[str, Any]) -> HistoryEvent:
    """Rebuild a history event from its JSON text or dict form."""
    if isinstance(data, (str, bytes)):
        return HISTORY_EVENT_ADAPTER.validate_json(data)
    return HISTORY_EVENT_ADAPTER.validate_python(data)


def to_payload(value: Any) -> Any:
    """Convert pydantic models (also nested in lists and dicts) to JSON-ready data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, dict):
        return {k: to_payload(v) for k, v in value.items()}
    return value


class WorkItem(BaseModel):
    """Envelope exchanged over the transport to dispatch one activity."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: str
    sequence_no: int
    name: str
    input: Any = None
    attempt: int = 1
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_json(self) -> str:
        """Serialize work item to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkItem":
        """Deserialize work item from JSON."""
        return cls.model_validate_json(data)

    def redelivery(self) -> "WorkItem":
        """Copy of this item for another dispatch attempt."""
        return self.model_copy(
            update={"message_id": str(uuid.uuid4()), "attempt": self.attempt + 1}
        )
