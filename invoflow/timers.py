"""Durable timers: deadlines recorded in history and fired by the host."""

from __future__ import annotations

from datetime import datetime
from typing import List

from .contracts import TimerCreated, TimerFired
from .history import OrchestrationHistory


class TimerService:
    """Finds timers whose deadline has passed and produces their fire records."""

    def due(self, history: OrchestrationHistory, now: datetime) -> List[TimerCreated]:
        """Timers with ``fire_at <= now`` that were neither fired nor cancelled.

        Ordered by deadline, then by creation order, which is the order their
        fire records are appended in.
        """
        if history.is_terminal:
            return []
        due = [timer for timer in history.pending_timers() if timer.fire_at <= now]
        return sorted(due, key=lambda t: (t.fire_at, t.sequence_no))

    def fire(self, timers: List[TimerCreated], now: datetime) -> List[TimerFired]:
        return [TimerFired(sequence_no=timer.sequence_no, timestamp=now) for timer in timers]
