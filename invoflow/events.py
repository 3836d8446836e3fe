"""External event channel: per-instance FIFO mailboxes of raised events."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .contracts import ExternalEventReceived, to_payload
from .persistence.models import BufferedEvent
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class EventChannel:
    """Buffers events raised before an orchestration waits for them."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def buffer(
        self, instance_id: str, name: str, payload: Any, received_at: datetime
    ) -> BufferedEvent:
        event = await self._repository.buffer_event(
            instance_id, name, to_payload(payload), received_at
        )
        logger.info(f"Buffered event {name} for instance={instance_id}")
        return event

    async def next_deliverable(
        self, instance_id: str, waiting_for: List[str]
    ) -> Optional[BufferedEvent]:
        """Oldest buffered event whose name the orchestration is waiting on."""
        if not waiting_for:
            return None
        for event in await self._repository.list_buffered_events(instance_id):
            if event.name in waiting_for:
                return event
        return None

    async def consume(self, event: BufferedEvent) -> None:
        await self._repository.remove_buffered_event(event.instance_id, event.buffer_id)

    async def pending(self, instance_id: str) -> Dict[str, List[Any]]:
        """Undelivered payloads grouped by event name, oldest first."""
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for event in await self._repository.list_buffered_events(instance_id):
            grouped[event.name].append(event.payload)
        return dict(grouped)

    @staticmethod
    def received(name: str, payload: Any, timestamp: datetime) -> ExternalEventReceived:
        return ExternalEventReceived(name=name, payload=to_payload(payload), timestamp=timestamp)
