"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence

from ..contracts import FailureDetails, HistoryEvent, InstanceStatus, OrchestrationStarted
from .models import BufferedEvent, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    The history of an instance is append-only. ``append_history`` is the
    single write path and must be linearizable per instance: it only
    succeeds when the stored history still has ``expected_version`` events,
    otherwise it raises :class:`~invoflow.errors.HistoryConflict`.
    """

    async def create_instance(
        self, instance: WorkflowInstance, started: OrchestrationStarted
    ) -> None:
        """Persist a new instance together with its first history event."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the instance by id."""

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        """Return persisted instances, optionally filtered by status."""

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
        """Record the state reached by the latest advance."""

    async def get_history(self, instance_id: str) -> list[HistoryEvent]:
        """Return the full history ordered by ``event_id``."""

    async def append_history(
        self, instance_id: str, events: Sequence[HistoryEvent], expected_version: int
    ) -> list[HistoryEvent]:
        """Append ``events`` and return them with their assigned ``event_id``."""

    async def buffer_event(
        self, instance_id: str, name: str, payload: Any, received_at: datetime
    ) -> BufferedEvent:
        """Queue an external event for later delivery."""

    async def list_buffered_events(self, instance_id: str) -> list[BufferedEvent]:
        """Buffered events in arrival order."""

    async def remove_buffered_event(self, instance_id: str, buffer_id: int) -> None:
        """Drop a delivered event from the buffer."""
