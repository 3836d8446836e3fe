"""Indexed, read-only view over one instance's append-only history log."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from .contracts import (
    DECISION_TYPES,
    ActivityCompleted,
    ActivityScheduled,
    ExternalEventReceived,
    HistoryEvent,
    OrchestrationCompleted,
    OrchestrationFailed,
    OrchestrationStarted,
    TimerCancelled,
    TimerCreated,
    TimerFired,
)


class OrchestrationHistory:
    """Lookups used by replay and by the runtime.

    The log is ordered by ``event_id``. Decisions are indexed by their
    ``sequence_no``; outcomes (activity completions, timer fires and
    cancellations) by the ``sequence_no`` of the decision they answer. Only
    the first outcome recorded for a sequence number counts.
    """

    def __init__(self, events: Sequence[HistoryEvent]) -> None:
        self.events: List[HistoryEvent] = sorted(events, key=lambda e: e.event_id)
        self.started: Optional[OrchestrationStarted] = None
        self.terminal: Optional[OrchestrationCompleted | OrchestrationFailed] = None
        self._decisions: Dict[int, HistoryEvent] = {}
        self._completions: Dict[int, ActivityCompleted] = {}
        self._fired: Dict[int, TimerFired] = {}
        self._cancelled: Dict[int, TimerCancelled] = {}
        self._external: Dict[str, List[ExternalEventReceived]] = defaultdict(list)

        for event in self.events:
            if isinstance(event, OrchestrationStarted):
                self.started = self.started or event
            elif isinstance(event, (OrchestrationCompleted, OrchestrationFailed)):
                self.terminal = self.terminal or event
            elif isinstance(event, ActivityCompleted):
                self._completions.setdefault(event.sequence_no, event)
            elif isinstance(event, TimerFired):
                self._fired.setdefault(event.sequence_no, event)
            elif isinstance(event, ExternalEventReceived):
                self._external[event.name].append(event)
            if isinstance(event, TimerCancelled):
                self._cancelled.setdefault(event.timer_sequence_no, event)
            if isinstance(event, DECISION_TYPES):
                self._decisions.setdefault(event.sequence_no, event)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def version(self) -> int:
        """Number of events appended so far; the next append expects this."""
        return len(self.events)

    @property
    def max_sequence_no(self) -> int:
        return max(self._decisions, default=0)

    def decision(self, sequence_no: int) -> Optional[HistoryEvent]:
        return self._decisions.get(sequence_no)

    def decisions(self) -> List[HistoryEvent]:
        return [self._decisions[k] for k in sorted(self._decisions)]

    def activity_completion(self, sequence_no: int) -> Optional[ActivityCompleted]:
        return self._completions.get(sequence_no)

    def timer_fired(self, sequence_no: int) -> Optional[TimerFired]:
        return self._fired.get(sequence_no)

    def timer_cancelled(self, sequence_no: int) -> Optional[TimerCancelled]:
        return self._cancelled.get(sequence_no)

    def external_events(self, name: str) -> List[ExternalEventReceived]:
        return list(self._external.get(name, ()))

    def pending_activities(self) -> List[ActivityScheduled]:
        """Activities scheduled but without a recorded completion."""
        return [
            d
            for d in self.decisions()
            if isinstance(d, ActivityScheduled) and d.sequence_no not in self._completions
        ]

    def pending_timers(self) -> List[TimerCreated]:
        """Timers neither fired nor cancelled."""
        return [
            d
            for d in self.decisions()
            if isinstance(d, TimerCreated)
            and d.sequence_no not in self._fired
            and d.sequence_no not in self._cancelled
        ]

    @property
    def is_terminal(self) -> bool:
        return self.terminal is not None


def next_event_ids(start_version: int, events: Iterable[HistoryEvent]) -> List[HistoryEvent]:
    """Return copies of ``events`` numbered consecutively after ``start_version``."""
    numbered: List[HistoryEvent] = []
    for offset, event in enumerate(events, start=1):
        numbered.append(event.model_copy(update={"event_id": start_version + offset}))
    return numbered
