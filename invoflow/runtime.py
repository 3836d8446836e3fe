"""Runtime host: drives instances between replay passes.

The runtime is the only component that writes history. For each instance it
holds an ``asyncio.Lock`` while it loads history, runs the replay engine and
appends the resulting decisions, and every append carries the version it
was computed from, so a concurrent writer in another process makes the
append fail with :class:`~invoflow.errors.HistoryConflict` instead of
interleaving.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from .activities import ActivityResult, ActivityRunner
from .clock import Clock, SystemClock
from .constants import DEFAULT_ACTIVITY_TOPIC
from .contracts import (
    ActivityCompleted,
    ActivityScheduled,
    FailureDetails,
    HistoryEvent,
    InstanceStatus,
    WorkItem,
    to_payload,
)
from .engine import AdvanceResult, ReplayEngine
from .errors import InstanceNotFound
from .events import EventChannel
from .history import OrchestrationHistory
from .persistence.models import WorkflowInstance
from .persistence.repository import WorkflowRepository
from .registry import ActivityRegistry, OrchestrationRegistry
from .timers import TimerService
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class OrchestrationRuntime:
    """Executes orchestrations and their activities against a repository."""

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: BaseTransport,
        orchestrations: OrchestrationRegistry,
        activities: ActivityRegistry,
        clock: Optional[Clock] = None,
        activity_topic: str = DEFAULT_ACTIVITY_TOPIC,
    ) -> None:
        self.repository = repository
        self.transport = transport
        self.orchestrations = orchestrations
        self.activities = activities
        self.clock = clock or SystemClock()
        self.activity_topic = activity_topic
        self.engine = ReplayEngine(orchestrations)
        self.runner = ActivityRunner(activities)
        self.timers = TimerService()
        self.events = EventChannel(repository)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, instance_id: str) -> asyncio.Lock:
        """Per-instance exclusivity for every history write."""
        return self._locks[instance_id]

    def _forget_lock(self, instance_id: str) -> None:
        # Terminal instances never write history again.
        self._locks.pop(instance_id, None)

    # ------------------------------------------------------------------
    # Advancing
    async def advance(self, instance_id: str) -> WorkflowInstance:
        """Replay ``instance_id`` and act on the decisions it makes."""
        async with self.lock(instance_id):
            return await self._advance_locked(instance_id)

    async def _advance_locked(self, instance_id: str) -> WorkflowInstance:
        while True:
            instance = await self._load(instance_id)
            if instance.status.is_terminal:
                self._forget_lock(instance_id)
                return instance

            history = OrchestrationHistory(await self.repository.get_history(instance_id))
            now = self.clock.now()
            result = self.engine.advance(instance, history, now)
            appended = await self._append(instance_id, result.new_events, history.version)
            await self._dispatch(instance_id, appended)
            await self.repository.update_instance(
                instance_id,
                status=result.status,
                updated_at=now,
                output=result.output,
                failure=result.failure,
                waiting_for=result.waiting_for,
            )
            self._log_result(instance_id, result)
            if result.is_complete:
                self._forget_lock(instance_id)
                return await self._load(instance_id)

            delivered = await self._deliver_buffered(
                instance_id, result.waiting_for, history.version + len(appended)
            )
            if not delivered:
                return await self._load(instance_id)

    async def _deliver_buffered(
        self, instance_id: str, waiting_for: List[str], version: int
    ) -> bool:
        buffered = await self.events.next_deliverable(instance_id, waiting_for)
        if buffered is None:
            return False
        received = self.events.received(buffered.name, buffered.payload, self.clock.now())
        await self._append(instance_id, [received], version)
        await self.events.consume(buffered)
        logger.info(f"Delivered buffered event {buffered.name} to instance={instance_id}")
        return True

    async def _append(
        self, instance_id: str, events: List[HistoryEvent], version: int
    ) -> List[HistoryEvent]:
        if not events:
            return []
        return await self.repository.append_history(instance_id, events, version)

    async def _dispatch(self, instance_id: str, events: List[HistoryEvent]) -> None:
        for event in events:
            if isinstance(event, ActivityScheduled):
                await self._publish(self._work_item(instance_id, event))

    @staticmethod
    def _work_item(instance_id: str, event: ActivityScheduled) -> WorkItem:
        return WorkItem(
            instance_id=instance_id,
            sequence_no=event.sequence_no,
            name=event.name,
            input=event.input,
        )

    async def _publish(self, item: WorkItem) -> None:
        await self.transport.publish(self.activity_topic, item)
        logger.debug(
            f"Dispatched activity {item.name} #{item.sequence_no} attempt={item.attempt} "
            f"for instance={item.instance_id}"
        )

    def _log_result(self, instance_id: str, result: AdvanceResult) -> None:
        if result.status is InstanceStatus.COMPLETED:
            logger.info(f"Instance {instance_id} completed")
        elif result.status is InstanceStatus.FAILED:
            logger.error(
                f"Instance {instance_id} failed: {result.failure.error_type}: {result.failure.message}"
            )
        elif result.new_tasks:
            names = ", ".join(t.name for t in result.new_tasks)
            logger.info(f"Instance {instance_id} scheduled {names}")

    async def _load(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    # ------------------------------------------------------------------
    # External events
    async def raise_event(self, instance_id: str, name: str, payload: Any = None) -> bool:
        """Deliver an event, or buffer it when nothing is waiting on ``name``.

        Returns ``True`` when the event was recorded in history right away.
        """
        async with self.lock(instance_id):
            instance = await self._load(instance_id)
            now = self.clock.now()
            if instance.status.is_terminal:
                logger.warning(
                    f"Instance {instance_id} is {instance.status.value}; event {name} retained in buffer"
                )
                await self.events.buffer(instance_id, name, payload, now)
                self._forget_lock(instance_id)
                return False
            if name not in instance.waiting_for:
                await self.events.buffer(instance_id, name, payload, now)
                return False
            history = await self.repository.get_history(instance_id)
            await self._append(
                instance_id, [self.events.received(name, payload, now)], len(history)
            )
            logger.info(f"Event {name} received by instance={instance_id}")
            await self._advance_locked(instance_id)
            return True

    # ------------------------------------------------------------------
    # Activities
    async def complete_activity(
        self,
        instance_id: str,
        sequence_no: int,
        result: Any = None,
        failure: Optional[FailureDetails] = None,
    ) -> bool:
        """Record the outcome of activity ``sequence_no`` and advance.

        The first recorded outcome is final: later completions for the same
        call, and completions for finished instances, are ignored.
        """
        async with self.lock(instance_id):
            instance = await self._load(instance_id)
            if instance.status.is_terminal:
                logger.info(
                    f"Ignoring completion #{sequence_no} for {instance.status.value} instance={instance_id}"
                )
                self._forget_lock(instance_id)
                return False
            history = OrchestrationHistory(await self.repository.get_history(instance_id))
            scheduled = history.decision(sequence_no)
            if not isinstance(scheduled, ActivityScheduled):
                logger.warning(
                    f"Ignoring completion #{sequence_no} for instance={instance_id}: no such activity"
                )
                return False
            if history.activity_completion(sequence_no) is not None:
                logger.info(
                    f"Duplicate completion of {scheduled.name} #{sequence_no} for instance={instance_id} ignored"
                )
                return False
            completed = ActivityCompleted(
                sequence_no=sequence_no,
                result=to_payload(result),
                failure=failure,
                timestamp=self.clock.now(),
            )
            await self._append(instance_id, [completed], history.version)
            await self._advance_locked(instance_id)
            return True

    async def execute_work_item(self, item: WorkItem) -> ActivityResult:
        """Run one dispatched activity and record its outcome."""
        outcome = await self.runner.execute(item)
        await self.complete_activity(
            item.instance_id, item.sequence_no, outcome.result, outcome.failure
        )
        return outcome

    async def process_activities(self, limit: Optional[int] = None) -> int:
        """Execute queued work items without waiting for new ones."""
        processed = 0
        while limit is None or processed < limit:
            polled = await self.transport.poll(self.activity_topic)
            if polled is None:
                break
            raw_message, item = polled
            await self.execute_work_item(item)
            await self.transport.ack(raw_message)
            processed += 1
        return processed

    # ------------------------------------------------------------------
    # Timers
    async def fire_due_timers(self) -> int:
        """Record every timer whose deadline has passed and advance its instance."""
        fired = 0
        for instance in await self.repository.list_instances(InstanceStatus.RUNNING):
            fired += await self._fire_instance_timers(instance.instance_id)
        return fired

    async def _fire_instance_timers(self, instance_id: str) -> int:
        async with self.lock(instance_id):
            history = OrchestrationHistory(await self.repository.get_history(instance_id))
            now = self.clock.now()
            due = self.timers.due(history, now)
            if not due:
                return 0
            await self._append(instance_id, self.timers.fire(due, now), history.version)
            logger.info(f"Fired {len(due)} timer(s) for instance={instance_id}")
            await self._advance_locked(instance_id)
            return len(due)

    # ------------------------------------------------------------------
    # Recovery and driving
    async def recover(self, redispatch: Optional[bool] = None) -> int:
        """Re-dispatch activities scheduled but never completed, then advance.

        Used after a host restart, when queued work items may have been lost.
        Re-dispatch defaults to on only for transports that do not outlive the
        process (``transport.durable`` is false). With a durable transport the
        original item may still be queued, so re-dispatching would run the
        activity twice; pass ``redispatch=True`` to accept that duplication
        when items could have been taken off the queue by a crashed worker.
        Activity execution is at-least-once either way: completions after the
        first are ignored.
        """
        if redispatch is None:
            redispatch = not self.transport.durable
        redispatched = 0
        for instance in await self.repository.list_instances(InstanceStatus.RUNNING):
            history = OrchestrationHistory(
                await self.repository.get_history(instance.instance_id)
            )
            if redispatch:
                for scheduled in history.pending_activities():
                    item = self._work_item(instance.instance_id, scheduled).redelivery()
                    await self._publish(item)
                    redispatched += 1
            await self.advance(instance.instance_id)
        if redispatched:
            logger.info(f"Recovered {redispatched} pending activity dispatch(es)")
        return redispatched

    async def run_until_idle(self, max_rounds: int = 1000) -> int:
        """Process activities and due timers until neither makes progress."""
        rounds = 0
        while rounds < max_rounds:
            progressed = await self.process_activities()
            progressed += await self.fire_due_timers()
            if not progressed:
                break
            rounds += 1
        return rounds
