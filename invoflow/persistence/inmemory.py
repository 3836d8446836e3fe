"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Sequence

from ..contracts import FailureDetails, HistoryEvent, InstanceStatus, OrchestrationStarted
from ..errors import HistoryConflict, InstanceAlreadyExists, InstanceNotFound
from ..history import next_event_ids
from .models import BufferedEvent, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._history: Dict[str, List[HistoryEvent]] = {}
        self._buffer: Dict[str, List[BufferedEvent]] = {}
        self._buffer_id = 0

    # ------------------------------------------------------------------
    async def create_instance(
        self, instance: WorkflowInstance, started: OrchestrationStarted
    ) -> None:
        if instance.instance_id in self._instances:
            raise InstanceAlreadyExists(instance.instance_id)
        self._instances[instance.instance_id] = instance.model_copy(deep=True)
        self._history[instance.instance_id] = next_event_ids(0, [started])
        self._buffer[instance.instance_id] = []

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._instances.values()
            if status is None or wf.status == status
        ]

    async def update_instance(
        self,
        instance_id: str,
        *,
        status: InstanceStatus,
        updated_at: datetime,
        output: Any = None,
        failure: FailureDetails | None = None,
        waiting_for: Sequence[str] = (),
    ) -> None:
        wf = self._instances.get(instance_id)
        if wf is None:
            raise InstanceNotFound(instance_id)
        wf.status = status
        wf.updated_at = updated_at
        wf.output = output
        wf.failure = failure
        wf.waiting_for = list(waiting_for)

    async def get_history(self, instance_id: str) -> list[HistoryEvent]:
        if instance_id not in self._history:
            raise InstanceNotFound(instance_id)
        return list(self._history[instance_id])

    async def append_history(
        self, instance_id: str, events: Sequence[HistoryEvent], expected_version: int
    ) -> list[HistoryEvent]:
        history = self._history.get(instance_id)
        if history is None:
            raise InstanceNotFound(instance_id)
        if len(history) != expected_version:
            raise HistoryConflict(instance_id, expected_version, len(history))
        appended = next_event_ids(expected_version, events)
        history.extend(appended)
        return appended

    async def buffer_event(
        self, instance_id: str, name: str, payload: Any, received_at: datetime
    ) -> BufferedEvent:
        if instance_id not in self._buffer:
            raise InstanceNotFound(instance_id)
        self._buffer_id += 1
        event = BufferedEvent(
            buffer_id=self._buffer_id,
            instance_id=instance_id,
            name=name,
            payload=payload,
            received_at=received_at,
        )
        self._buffer[instance_id].append(event)
        return event

    async def list_buffered_events(self, instance_id: str) -> list[BufferedEvent]:
        return list(self._buffer.get(instance_id, []))

    async def remove_buffered_event(self, instance_id: str, buffer_id: int) -> None:
        self._buffer[instance_id] = [
            e for e in self._buffer.get(instance_id, []) if e.buffer_id != buffer_id
        ]
