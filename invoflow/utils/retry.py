from __future__ import annotations

from datetime import timedelta
from typing import Any, Generator, Tuple, Type

from ..context import DurableTask, OrchestrationContext
from ..errors import ActivityFailure


def compute_backoff(attempt: int, base: float = 1.5) -> float:
    """Exponential backoff in seconds; no jitter, so replays agree."""
    return base ** attempt


def call_activity_with_retry(
    ctx: OrchestrationContext,
    name: str,
    input: Any = None,
    max_attempts: int = 3,
    base: float = 1.5,
    retry_on: Tuple[Type[BaseException], ...] = (ActivityFailure,),
) -> Generator[DurableTask, Any, Any]:
    """Call an activity, retrying failures after a durable delay.

    Use with ``yield from`` inside an orchestration. The engine itself never
    retries; each attempt here is a separate scheduled activity and each
    delay is a durable timer, so the loop replays like any other code.
    Backoff has no jitter because it must be the same on every replay.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    for attempt in range(1, max_attempts + 1):
        try:
            return (yield ctx.call_activity(name, input))
        except retry_on:
            if attempt == max_attempts:
                raise
            ctx.trace("Retrying %s after failed attempt %d", name, attempt)
            delay = timedelta(seconds=compute_backoff(attempt, base=base))
            yield ctx.create_timer(ctx.current_utc_datetime() + delay)
