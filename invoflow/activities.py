"""Task activity runner: executes side-effecting units of work."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .contracts import FailureDetails, WorkItem, to_payload
from .registry import ActivityRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityContext:
    """Identifies one dispatch of an activity.

    ``(instance_id, sequence_no)`` is stable across re-dispatches of the same
    scheduled call and can be used by activities as an idempotency key.
    """

    instance_id: str
    sequence_no: int
    name: str
    attempt: int = 1


@dataclass(frozen=True)
class ActivityResult:
    result: Any = None
    failure: Optional[FailureDetails] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class ActivityRunner:
    """Runs registered activities once per dispatch, without retries.

    Activities may run more than once for the same scheduled call when the
    host crashes before the completion is recorded, so implementations must
    be idempotent with respect to their input.
    """

    def __init__(self, registry: ActivityRegistry) -> None:
        self._registry = registry

    async def invoke(
        self, name: str, input: Any = None, context: Optional[ActivityContext] = None
    ) -> Any:
        """Run activity ``name`` and return its result; exceptions propagate."""
        fn = self._registry.get(name)
        context = context or ActivityContext(instance_id="", sequence_no=0, name=name)
        result = fn(context, input)
        if inspect.isawaitable(result):
            result = await result
        return to_payload(result)

    async def execute(self, item: WorkItem) -> ActivityResult:
        """Run the activity described by ``item`` and capture its outcome."""
        context = ActivityContext(
            instance_id=item.instance_id,
            sequence_no=item.sequence_no,
            name=item.name,
            attempt=item.attempt,
        )
        logger.info(
            f"Running activity {item.name} #{item.sequence_no} for instance={item.instance_id}"
        )
        try:
            result = await self.invoke(item.name, item.input, context)
        except Exception as e:
            logger.warning(
                f"Activity {item.name} #{item.sequence_no} failed for instance={item.instance_id}: {e}"
            )
            return ActivityResult(failure=FailureDetails.from_exception(e))
        return ActivityResult(result=result)
