"""Durable timer service tests."""

from datetime import timedelta

from invoflow.clock import ManualClock
from invoflow.contracts import OrchestrationCompleted, TimerCancelled, TimerCreated, TimerFired
from invoflow.engine import started_event
from invoflow.history import OrchestrationHistory, next_event_ids
from invoflow.timers import TimerService


def _history(*events):
    clock = ManualClock()
    return OrchestrationHistory(
        next_event_ids(0, [started_event("T", None, clock.now()), *events])
    )


def test_due_timers_ordered_by_deadline_then_creation():
    clock = ManualClock()
    t0 = clock.now()
    history = _history(
        TimerCreated(sequence_no=1, fire_at=t0 + timedelta(seconds=30)),
        TimerCreated(sequence_no=2, fire_at=t0 + timedelta(seconds=10)),
        TimerCreated(sequence_no=3, fire_at=t0 + timedelta(seconds=10)),
        TimerCreated(sequence_no=4, fire_at=t0 + timedelta(seconds=90)),
    )
    service = TimerService()

    assert service.due(history, clock.now()) == []
    clock.advance(30)
    assert [t.sequence_no for t in service.due(history, clock.now())] == [2, 3, 1]


def test_fired_and_cancelled_timers_are_not_due():
    clock = ManualClock()
    t0 = clock.now()
    history = _history(
        TimerCreated(sequence_no=1, fire_at=t0),
        TimerCreated(sequence_no=2, fire_at=t0),
        TimerFired(sequence_no=1),
        TimerCancelled(sequence_no=3, timer_sequence_no=2),
    )

    assert TimerService().due(history, clock.now()) == []


def test_terminal_history_has_no_due_timers():
    clock = ManualClock()
    history = _history(
        TimerCreated(sequence_no=1, fire_at=clock.now()),
        OrchestrationCompleted(output=None),
    )

    assert TimerService().due(history, clock.now()) == []


def test_fire_produces_fire_records():
    clock = ManualClock()
    created = TimerCreated(sequence_no=7, fire_at=clock.now())

    fired = TimerService().fire([created], clock.now())
    assert [(f.sequence_no, f.timestamp) for f in fired] == [(7, clock.now())]
