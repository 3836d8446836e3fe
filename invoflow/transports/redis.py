"""Redis transport for cross-process messaging."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import WorkItem
from .base import BaseTransport

logger = logging.getLogger(__name__)

RawMessage = Tuple[str, str]


class RedisTransport(BaseTransport[RawMessage]):
    """Redis-based transport for distributed messaging."""

    durable = True

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _queue_name(topic: str) -> str:
        return f"invoflow:{topic}"

    def _parse(self, topic: str, message_json: str) -> Optional[Tuple[RawMessage, WorkItem]]:
        try:
            return (topic, message_json), WorkItem.from_json(message_json)
        except ValidationError as e:
            logger.error(f"Failed to parse message on {topic}: {e}")
            return None

    async def publish(self, topic: str, message: WorkItem) -> None:
        """Publish message to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self._queue_name(topic), message.to_json())

    async def poll(self, topic: str) -> Optional[Tuple[RawMessage, WorkItem]]:
        if not self._redis:
            await self.connect()
        message_json = await self._redis.rpop(self._queue_name(topic))
        if message_json is None:
            return None
        return self._parse(topic, message_json)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, WorkItem]]:
        """Subscribe to messages from Redis queue."""
        if not self._redis:
            await self.connect()

        start_time = asyncio.get_running_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_running_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            # Blocking pop with timeout
            result = await self._redis.brpop(self._queue_name(topic), timeout=1)

            if result:
                _, message_json = result
                parsed = self._parse(topic, message_json)
                if parsed is not None:
                    yield parsed

            # Brief sleep to prevent busy waiting when no messages
            await asyncio.sleep(0.01)

    async def ack(self, raw_message: RawMessage) -> None:
        """No-op acknowledgment for Redis transport (message already consumed)."""
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        if requeue:
            topic, message_json = raw_message
            message = WorkItem.from_json(message_json).redelivery()
            await self.publish(topic, message)
