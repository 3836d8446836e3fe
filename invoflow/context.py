"""Durable primitives handed to orchestration functions.

Orchestrations are generator functions ``fn(ctx, input)`` that ``yield`` the
tasks created here. Each task resolves purely from the recorded history, so
running the same function against the same history always makes the same
decisions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, Tuple

from .contracts import (
    ActivityScheduled,
    ExternalEventReceived,
    HistoryEvent,
    TimeRecorded,
    TimerCancelled,
    TimerCreated,
    to_payload,
)
from .errors import ActivityFailure, DeterminismViolation
from .history import OrchestrationHistory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    """Recorded result of a durable task and the log position that produced it."""

    event_id: int
    value: Any = None
    error: Optional[BaseException] = None


class RaceResult(NamedTuple):
    winner: "DurableTask"
    value: Any


class DurableTask:
    """A durable call whose outcome is looked up in history."""

    def __init__(self, ctx: "OrchestrationContext") -> None:
        self._ctx = ctx
        self._outcome: Optional[TaskOutcome] = None
        self._abandoned = False

    def outcome(self) -> Optional[TaskOutcome]:
        """Return the recorded outcome, or ``None`` while still pending."""
        if self._outcome is None and not self._abandoned:
            self._outcome = self._resolve()
        return self._outcome

    @property
    def is_completed(self) -> bool:
        return self.outcome() is not None

    @property
    def result(self) -> Any:
        outcome = self.outcome()
        if outcome is None:
            raise RuntimeError(f"{self!r} has not completed")
        if outcome.error is not None:
            raise outcome.error
        return outcome.value

    def _resolve(self) -> Optional[TaskOutcome]:
        raise NotImplementedError

    def _abandon(self) -> None:
        """Called when a race is won by another task."""


class ActivityTask(DurableTask):
    def __init__(self, ctx: "OrchestrationContext", sequence_no: int, name: str) -> None:
        super().__init__(ctx)
        self.sequence_no = sequence_no
        self.name = name

    def _resolve(self) -> Optional[TaskOutcome]:
        completed = self._ctx.history.activity_completion(self.sequence_no)
        if completed is None:
            return None
        if completed.failure is not None:
            return TaskOutcome(
                completed.event_id, error=ActivityFailure(self.name, completed.failure)
            )
        return TaskOutcome(completed.event_id, value=completed.result)

    def __repr__(self) -> str:
        return f"ActivityTask({self.name!r}, sequence_no={self.sequence_no})"


class TimerTask(DurableTask):
    def __init__(
        self, ctx: "OrchestrationContext", sequence_no: int, fire_at: datetime
    ) -> None:
        super().__init__(ctx)
        self.sequence_no = sequence_no
        self.fire_at = fire_at
        self.cancelled = False

    def _resolve(self) -> Optional[TaskOutcome]:
        fired = self._ctx.history.timer_fired(self.sequence_no)
        if fired is None:
            return None
        cancelled = self._ctx.history.timer_cancelled(self.sequence_no)
        if cancelled is not None and cancelled.event_id < fired.event_id:
            return None
        return TaskOutcome(fired.event_id, value=self.fire_at)

    def _abandon(self) -> None:
        if self.outcome() is None:
            self._ctx.cancel_timer(self)

    def __repr__(self) -> str:
        return f"TimerTask(fire_at={self.fire_at.isoformat()}, sequence_no={self.sequence_no})"


class EventTask(DurableTask):
    def __init__(self, ctx: "OrchestrationContext", name: str) -> None:
        super().__init__(ctx)
        self.name = name
        self.record: Optional[ExternalEventReceived] = None

    def _resolve(self) -> Optional[TaskOutcome]:
        if self.record is None:
            self.record = self._ctx._claim_event(self)
        if self.record is None:
            return None
        return TaskOutcome(self.record.event_id, value=self.record.payload)

    def _abandon(self) -> None:
        # A losing wait leaves its event for the next open wait on the name.
        self.record = None
        self._outcome = None
        self._abandoned = True

    def __repr__(self) -> str:
        return f"EventTask({self.name!r})"


class RaceTask(DurableTask):
    """Completes with the child whose outcome was recorded first."""

    def __init__(self, ctx: "OrchestrationContext", tasks: List[DurableTask]) -> None:
        super().__init__(ctx)
        if not tasks:
            raise ValueError("watch_first needs at least one task")
        self.tasks = tasks

    def _resolve(self) -> Optional[TaskOutcome]:
        done = [(task, task.outcome()) for task in self.tasks]
        done = [(task, outcome) for task, outcome in done if outcome is not None]
        if not done:
            return None
        winner, outcome = min(done, key=lambda pair: pair[1].event_id)
        for task in self.tasks:
            if task is not winner:
                task._abandon()
        if outcome.error is not None:
            return TaskOutcome(outcome.event_id, error=outcome.error)
        return TaskOutcome(outcome.event_id, value=RaceResult(winner, outcome.value))

    def _abandon(self) -> None:
        if self.outcome() is None:
            for task in self.tasks:
                task._abandon()
            self._abandoned = True


class AllTask(DurableTask):
    """Completes once every child has; raises the earliest recorded failure."""

    def __init__(self, ctx: "OrchestrationContext", tasks: List[DurableTask]) -> None:
        super().__init__(ctx)
        self.tasks = tasks

    def _resolve(self) -> Optional[TaskOutcome]:
        outcomes = [task.outcome() for task in self.tasks]
        if any(outcome is None for outcome in outcomes):
            return None
        if not outcomes:
            return TaskOutcome(0, value=[])
        last = max(outcome.event_id for outcome in outcomes)
        failures = [outcome for outcome in outcomes if outcome.error is not None]
        if failures:
            first = min(failures, key=lambda outcome: outcome.event_id)
            return TaskOutcome(last, error=first.error)
        return TaskOutcome(last, value=[outcome.value for outcome in outcomes])

    def _abandon(self) -> None:
        if self.outcome() is None:
            for task in self.tasks:
                task._abandon()
            self._abandoned = True


def _flatten(tasks: tuple) -> List[DurableTask]:
    if len(tasks) == 1 and not isinstance(tasks[0], DurableTask):
        tasks = tuple(tasks[0])
    for task in tasks:
        if not isinstance(task, DurableTask):
            raise TypeError(f"Expected a durable task, got {type(task).__name__}")
    return list(tasks)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OrchestrationContext:
    """Explicit handle for every durable operation of one replay pass."""

    def __init__(
        self,
        instance_id: str,
        workflow_type: str,
        input: Any,
        history: OrchestrationHistory,
        now: datetime,
    ) -> None:
        self.instance_id = instance_id
        self.workflow_type = workflow_type
        self.history = history
        self.new_events: List[HistoryEvent] = []
        self.violation: Optional[DeterminismViolation] = None
        self._input = input
        self._now = _as_utc(now)
        self._next_sequence = 1
        self._event_waits: List[EventTask] = []

    def get_input(self) -> Any:
        return self._input

    @property
    def is_replaying(self) -> bool:
        """True while recorded decisions remain to be reproduced."""
        return self._next_sequence <= self.history.max_sequence_no

    # ------------------------------------------------------------------
    # Durable operations
    def call_activity(self, name: str, input: Any = None) -> ActivityTask:
        """Schedule activity ``name``; yield the task to wait for its result."""
        event = self._decide(
            lambda seq: ActivityScheduled(
                sequence_no=seq, name=name, input=to_payload(input), timestamp=self._now
            )
        )
        return ActivityTask(self, event.sequence_no, name)

    def create_timer(self, fire_at: datetime) -> TimerTask:
        """Create a durable timer firing at the absolute time ``fire_at``."""
        fire_at = _as_utc(fire_at)
        event = self._decide(
            lambda seq: TimerCreated(sequence_no=seq, fire_at=fire_at, timestamp=self._now)
        )
        return TimerTask(self, event.sequence_no, event.fire_at)

    def cancel_timer(self, timer: TimerTask) -> None:
        """Cancel ``timer``; a cancelled timer never fires."""
        if timer.cancelled:
            return
        self._decide(
            lambda seq: TimerCancelled(
                sequence_no=seq, timer_sequence_no=timer.sequence_no, timestamp=self._now
            )
        )
        timer.cancelled = True

    def wait_for_event(self, name: str) -> EventTask:
        """Wait for the next external event called ``name``."""
        task = EventTask(self, name)
        self._event_waits.append(task)
        return task

    def watch_first(self, *tasks: DurableTask | Iterable[DurableTask]) -> RaceTask:
        """Race ``tasks``; the first outcome recorded in history wins."""
        return RaceTask(self, _flatten(tasks))

    def when_all(self, *tasks: DurableTask | Iterable[DurableTask]) -> AllTask:
        return AllTask(self, _flatten(tasks))

    def current_utc_datetime(self) -> datetime:
        """Deterministic "now": recorded on first execution, replayed afterwards."""
        event = self._decide(
            lambda seq: TimeRecorded(sequence_no=seq, value=self._now, timestamp=self._now)
        )
        return event.value

    def trace(self, message: str, *args: Any) -> None:
        """Log ``message`` unless the call is being replayed."""
        if not self.is_replaying:
            logger.info("[%s] " + message, self.instance_id, *args)

    # ------------------------------------------------------------------
    # Replay bookkeeping
    def waiting_for(self) -> List[str]:
        """Names with more open event waits than unclaimed recorded events."""
        names: List[str] = []
        for task in self._event_waits:
            if task.name in names:
                continue
            open_waits, unclaimed = self._open_event_waits(task.name)
            if len(open_waits) > len(unclaimed):
                names.append(task.name)
        return names

    def verify_reproduced(self) -> None:
        """Fail if history holds decisions this replay never made."""
        if self._next_sequence <= self.history.max_sequence_no:
            raise self._violate(
                f"history records decision #{self._next_sequence} "
                f"({self.history.decision(self._next_sequence).kind}) "
                "that replay did not reproduce"
            )

    def _decide(self, make: Callable[[int], HistoryEvent]) -> HistoryEvent:
        sequence_no = self._next_sequence
        self._next_sequence += 1
        candidate = make(sequence_no)
        recorded = self.history.decision(sequence_no)
        if recorded is None:
            self.new_events.append(candidate)
            return candidate
        if not _same_decision(recorded, candidate):
            raise self._violate(
                f"decision #{sequence_no} is {_describe(candidate)} "
                f"but history recorded {_describe(recorded)}"
            )
        return recorded

    def _violate(self, message: str) -> DeterminismViolation:
        exc = DeterminismViolation(f"Instance {self.instance_id}: {message}")
        if self.violation is None:
            self.violation = exc
        return exc

    def _open_event_waits(
        self, name: str
    ) -> Tuple[List[EventTask], List[ExternalEventReceived]]:
        waits = [w for w in self._event_waits if w.name == name and not w._abandoned]
        claimed = {w.record.event_id for w in waits if w.record is not None}
        unclaimed = [
            r for r in self.history.external_events(name) if r.event_id not in claimed
        ]
        return [w for w in waits if w.record is None], unclaimed

    def _claim_event(self, task: EventTask) -> Optional[ExternalEventReceived]:
        """Pair open waits with unclaimed records, both oldest first.

        Waits that lost a race hold no claim, so their records go to the next
        open wait on the same name.
        """
        open_waits, unclaimed = self._open_event_waits(task.name)
        for wait, record in zip(open_waits, unclaimed):
            if wait is task:
                return record
        return None


def _same_decision(recorded: HistoryEvent, candidate: HistoryEvent) -> bool:
    if type(recorded) is not type(candidate):
        return False
    if isinstance(candidate, ActivityScheduled):
        return recorded.name == candidate.name
    if isinstance(candidate, TimerCreated):
        return _as_utc(recorded.fire_at) == candidate.fire_at
    if isinstance(candidate, TimerCancelled):
        return recorded.timer_sequence_no == candidate.timer_sequence_no
    return True


def _describe(event: HistoryEvent) -> str:
    if isinstance(event, ActivityScheduled):
        return f"activity {event.name!r}"
    if isinstance(event, TimerCreated):
        return f"timer at {event.fire_at.isoformat()}"
    if isinstance(event, TimerCancelled):
        return f"cancellation of timer #{event.timer_sequence_no}"
    return event.kind
