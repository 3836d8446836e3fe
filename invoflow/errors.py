"""Error taxonomy for the orchestration core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .contracts import FailureDetails


class InvoflowError(Exception):
    """Base class for all invoflow errors."""


class DeterminismViolation(InvoflowError):
    """Replay produced a different decision sequence than the recorded history."""


class ActivityFailure(InvoflowError):
    """An activity raised; re-raised inside the orchestration at its call site."""

    def __init__(self, activity_name: str, failure: "FailureDetails") -> None:
        self.activity_name = activity_name
        self.failure = failure
        super().__init__(
            f"Activity {activity_name} failed: {failure.error_type}: {failure.message}"
        )


class ActivityNotRegistered(InvoflowError):
    """No activity with the requested name is registered."""


class OrchestrationNotRegistered(InvoflowError):
    """No orchestration with the requested workflow type is registered."""


class PersistenceFailure(InvoflowError):
    """The invoice sink could not durably append a row."""


class InstanceNotFound(InvoflowError):
    """No workflow instance exists with the given id."""


class InstanceAlreadyExists(InvoflowError):
    """A workflow instance with the given id was already created."""


class HistoryConflict(InvoflowError):
    """Another invocation appended to the instance history concurrently."""

    def __init__(self, instance_id: str, expected: int, actual: int) -> None:
        self.instance_id = instance_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History of {instance_id} is at version {actual}, expected {expected}"
        )
