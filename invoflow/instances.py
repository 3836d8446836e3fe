"""Instance manager: creates instances and answers status queries."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import FailureDetails, HistoryEvent, InstanceStatus, to_payload
from .engine import started_event
from .errors import InstanceNotFound
from .persistence.models import WorkflowInstance
from .runtime import OrchestrationRuntime

logger = logging.getLogger(__name__)


class InstanceStatusView(BaseModel):
    """What ``get_status`` reports for one instance."""

    instance_id: str
    workflow_type: str
    status: InstanceStatus
    output: Any = None
    failure: Optional[FailureDetails] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    waiting_for: List[str] = Field(default_factory=list)
    pending_events: Dict[str, List[Any]] = Field(default_factory=dict)


class InstanceManager:
    """Client-facing operations on orchestration instances."""

    def __init__(self, runtime: OrchestrationRuntime) -> None:
        self._runtime = runtime
        self._repository = runtime.repository

    async def create_instance(
        self, workflow_type: str, input: Any = None, instance_id: Optional[str] = None
    ) -> str:
        """Create an instance and run it up to its first suspension point."""
        # Fail before persisting anything when the type is unknown.
        self._runtime.orchestrations.get(workflow_type)
        instance_id = instance_id or str(uuid.uuid4())
        now = self._runtime.clock.now()
        payload = to_payload(input)
        instance = WorkflowInstance(
            instance_id=instance_id,
            workflow_type=workflow_type,
            input=payload,
            created_at=now,
            updated_at=now,
        )
        await self._repository.create_instance(
            instance, started_event(workflow_type, payload, now)
        )
        logger.info(f"Started {workflow_type} with ID = '{instance_id}'")
        await self._runtime.advance(instance_id)
        return instance_id

    async def get_status(self, instance_id: str) -> InstanceStatusView:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return InstanceStatusView(
            instance_id=instance.instance_id,
            workflow_type=instance.workflow_type,
            status=instance.status,
            output=instance.output,
            failure=instance.failure,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
            waiting_for=instance.waiting_for,
            pending_events=await self._runtime.events.pending(instance_id),
        )

    async def raise_event(self, instance_id: str, name: str, payload: Any = None) -> bool:
        """Send event ``name`` to ``instance_id``; see :meth:`OrchestrationRuntime.raise_event`."""
        return await self._runtime.raise_event(instance_id, name, payload)

    async def list_instances(
        self, status: Optional[InstanceStatus] = None
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(status)

    async def get_history(self, instance_id: str) -> List[HistoryEvent]:
        return await self._repository.get_history(instance_id)
