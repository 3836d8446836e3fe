"""Long-running worker: executes dispatched activities and fires timers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import HistoryConflict
from .runtime import OrchestrationRuntime

logger = logging.getLogger(__name__)


class ActivityWorker:
    """Listens for activity work items on the runtime's transport."""

    def __init__(
        self,
        runtime: OrchestrationRuntime,
        timer_interval: float = 1.0,
        redispatch: Optional[bool] = None,
    ) -> None:
        self._runtime = runtime
        self._redispatch = redispatch
        self._transport = runtime.transport
        self._timer_interval = timer_interval
        self.processed = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Run until ``lifespan`` seconds have passed (forever when ``None``)."""
        recovered = await self._runtime.recover(self._redispatch)
        if recovered:
            logger.info(f"Worker re-dispatched {recovered} activities on startup")
        timer_task = asyncio.create_task(self._timer_loop())
        try:
            await self._consume(lifespan)
        finally:
            timer_task.cancel()
            try:
                await timer_task
            except asyncio.CancelledError:
                pass

    async def _consume(self, lifespan: Optional[float]) -> None:
        async for raw_message, item in self._transport.subscribe(
            self._runtime.activity_topic, lifespan=lifespan
        ):
            try:
                await self._runtime.execute_work_item(item)
            except HistoryConflict as e:
                logger.warning(
                    f"History conflict completing {item.name} for instance={item.instance_id}: {e}; requeueing"
                )
                await self._transport.nack(raw_message)
                continue
            await self._transport.ack(raw_message)
            self.processed += 1

    async def _timer_loop(self) -> None:
        while True:
            try:
                await self._runtime.fire_due_timers()
            except HistoryConflict as e:
                logger.warning(f"History conflict firing timers: {e}")
            except Exception:
                logger.exception("Firing due timers failed; retrying next interval")
            await asyncio.sleep(self._timer_interval)
