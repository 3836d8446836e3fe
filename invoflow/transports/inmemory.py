"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import WorkItem
from .base import BaseTransport

RawMessage = Tuple[str, str, WorkItem]


class InMemoryTransport(BaseTransport[RawMessage]):
    """Simple in-process queue for unit tests."""

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._queues: Dict[str, Deque[RawMessage]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def publish(self, topic: str, message: WorkItem) -> None:
        """Publish message to in-memory queue."""
        raw = (topic, message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    async def poll(self, topic: str) -> Optional[Tuple[RawMessage, WorkItem]]:
        async with self._lock:
            if self._queues[topic]:
                raw_message = self._queues[topic].popleft()
                return raw_message, raw_message[2]
        return None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, WorkItem]]:
        """Subscribe to messages from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        start_time = asyncio.get_running_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_running_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            polled = await self.poll(topic)
            if polled is not None:
                yield polled
                continue

            await asyncio.sleep(self._poll_interval)

    async def ack(self, raw_message: RawMessage) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        """Put the message back at the end of its queue."""
        if requeue:
            topic, _, message = raw_message
            await self.publish(topic, message.redelivery())

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    def clear(self) -> None:
        """Drop every queued message, as a process crash would."""
        self._queues.clear()
