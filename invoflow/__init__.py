"""invoflow: durable, replay-based workflow orchestration."""

from .activities import ActivityContext, ActivityRunner
from .clock import ManualClock, SystemClock
from .context import OrchestrationContext, RaceResult
from .contracts import HistoryEvent, InstanceStatus, WorkItem
from .engine import AdvanceResult, ReplayEngine
from .errors import (
    ActivityFailure,
    DeterminismViolation,
    HistoryConflict,
    InstanceNotFound,
    PersistenceFailure,
)
from .instances import InstanceManager, InstanceStatusView
from .persistence import get_repository
from .registry import ActivityRegistry, OrchestrationRegistry
from .runtime import OrchestrationRuntime
from .transports import get_transport
from .worker import ActivityWorker

__version__ = "0.1.0"
__all__ = [
    "ActivityContext",
    "ActivityFailure",
    "ActivityRegistry",
    "ActivityRunner",
    "ActivityWorker",
    "AdvanceResult",
    "DeterminismViolation",
    "HistoryConflict",
    "HistoryEvent",
    "InstanceManager",
    "InstanceNotFound",
    "InstanceStatus",
    "InstanceStatusView",
    "ManualClock",
    "OrchestrationContext",
    "OrchestrationRegistry",
    "OrchestrationRuntime",
    "PersistenceFailure",
    "RaceResult",
    "ReplayEngine",
    "SystemClock",
    "WorkItem",
    "get_repository",
    "get_transport",
]
