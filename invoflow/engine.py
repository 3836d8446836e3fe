"""Replay engine: re-runs orchestration code against recorded history."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence

from .context import DurableTask, OrchestrationContext
from .contracts import (
    ActivityScheduled,
    FailureDetails,
    HistoryEvent,
    InstanceStatus,
    OrchestrationCompleted,
    OrchestrationFailed,
    OrchestrationStarted,
    to_payload,
)
from .errors import DeterminismViolation
from .history import OrchestrationHistory
from .persistence.models import WorkflowInstance
from .registry import OrchestrationRegistry

logger = logging.getLogger(__name__)


@dataclass
class AdvanceResult:
    """Decisions made by one replay pass."""

    new_events: List[HistoryEvent] = field(default_factory=list)
    status: InstanceStatus = InstanceStatus.RUNNING
    output: Any = None
    failure: Optional[FailureDetails] = None
    waiting_for: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status.is_terminal

    @property
    def new_tasks(self) -> List[ActivityScheduled]:
        """Activities that must be dispatched to the activity runner."""
        return [e for e in self.new_events if isinstance(e, ActivityScheduled)]


class ReplayEngine:
    """Deterministically advances orchestration instances.

    Each call to :meth:`advance` runs the orchestration from its first line.
    Durable calls whose outcome is in history return it immediately; the
    first call without a recorded outcome suspends the pass. The engine never
    touches storage or the clock: ``now`` is supplied by the caller and only
    used for decisions that are new in this pass.
    """

    def __init__(self, registry: OrchestrationRegistry) -> None:
        self._registry = registry

    def advance(
        self,
        instance: WorkflowInstance,
        history: Sequence[HistoryEvent] | OrchestrationHistory,
        now: datetime,
    ) -> AdvanceResult:
        log = (
            history
            if isinstance(history, OrchestrationHistory)
            else OrchestrationHistory(history)
        )
        if log.terminal is not None:
            return _terminal_result(log)

        orchestration_input = log.started.input if log.started else instance.input
        ctx = OrchestrationContext(
            instance.instance_id, instance.workflow_type, orchestration_input, log, now
        )
        fn = self._registry.get(instance.workflow_type)

        try:
            result = fn(ctx, orchestration_input)
            if inspect.isgenerator(result):
                return self._drive(ctx, result)
            if ctx.violation is not None:
                raise ctx.violation
            ctx.verify_reproduced()
            return _completed(ctx, result)
        except Exception as exc:
            return _failed(ctx, ctx.violation or exc)

    def _drive(self, ctx: OrchestrationContext, gen) -> AdvanceResult:
        value: Any = None
        error: Optional[BaseException] = None
        while True:
            try:
                if error is not None:
                    awaited = gen.throw(error)
                else:
                    awaited = gen.send(value)
            except StopIteration as stop:
                if ctx.violation is not None:
                    return _failed(ctx, ctx.violation)
                try:
                    ctx.verify_reproduced()
                except DeterminismViolation as exc:
                    return _failed(ctx, exc)
                return _completed(ctx, stop.value)
            except Exception as exc:
                return _failed(ctx, ctx.violation or exc)

            if ctx.violation is not None:
                gen.close()
                return _failed(ctx, ctx.violation)

            try:
                task = _as_task(ctx, awaited)
                outcome = task.outcome()
            except Exception as exc:
                gen.close()
                return _failed(ctx, ctx.violation or exc)

            if outcome is None:
                gen.close()
                try:
                    ctx.verify_reproduced()
                except DeterminismViolation as exc:
                    return _failed(ctx, exc)
                return AdvanceResult(
                    new_events=list(ctx.new_events),
                    waiting_for=ctx.waiting_for(),
                )
            value, error = outcome.value, outcome.error


def _as_task(ctx: OrchestrationContext, awaited: Any) -> DurableTask:
    if isinstance(awaited, DurableTask):
        return awaited
    if isinstance(awaited, (list, tuple)):
        return ctx.when_all(awaited)
    raise TypeError(
        f"Orchestrations must yield durable tasks, got {type(awaited).__name__}"
    )


def _completed(ctx: OrchestrationContext, output: Any) -> AdvanceResult:
    output = to_payload(output)
    ctx.trace("Orchestration completed")
    return AdvanceResult(
        new_events=list(ctx.new_events)
        + [OrchestrationCompleted(output=output, timestamp=ctx._now)],
        status=InstanceStatus.COMPLETED,
        output=output,
    )


def _failed(ctx: OrchestrationContext, exc: BaseException) -> AdvanceResult:
    failure = FailureDetails.from_exception(exc)
    if isinstance(exc, DeterminismViolation):
        logger.error(f"Determinism violation in {ctx.instance_id}: {exc}")
        # Decisions made after diverging from history are not kept.
        new_events: List[HistoryEvent] = []
    else:
        logger.warning(f"Orchestration {ctx.instance_id} failed: {exc}")
        new_events = list(ctx.new_events)
    return AdvanceResult(
        new_events=new_events + [OrchestrationFailed(failure=failure, timestamp=ctx._now)],
        status=InstanceStatus.FAILED,
        failure=failure,
    )


def _terminal_result(log: OrchestrationHistory) -> AdvanceResult:
    terminal = log.terminal
    if isinstance(terminal, OrchestrationCompleted):
        return AdvanceResult(status=InstanceStatus.COMPLETED, output=terminal.output)
    return AdvanceResult(status=InstanceStatus.FAILED, failure=terminal.failure)


def started_event(workflow_type: str, input: Any, now: datetime) -> OrchestrationStarted:
    return OrchestrationStarted(
        workflow_type=workflow_type, input=to_payload(input), timestamp=now
    )
