"""Name-based registries for orchestration and activity functions."""

from __future__ import annotations

from typing import Callable, Dict, Generic, List, Optional, TypeVar

from .errors import ActivityNotRegistered, OrchestrationNotRegistered

FnT = TypeVar("FnT", bound=Callable)


class _Registry(Generic[FnT]):
    _missing: type[Exception] = KeyError
    _kind = "function"

    def __init__(self) -> None:
        self._functions: Dict[str, FnT] = {}

    def add(self, name: str, fn: FnT) -> FnT:
        """Register ``fn`` under ``name``, replacing any previous entry."""
        self._functions[name] = fn
        return fn

    def register(self, name: Optional[str] = None) -> Callable[[FnT], FnT]:
        """Decorator form of :meth:`add`; defaults to the function name."""

        def decorator(fn: FnT) -> FnT:
            return self.add(name or fn.__name__, fn)

        return decorator

    def get(self, name: str) -> FnT:
        try:
            return self._functions[name]
        except KeyError:
            raise self._missing(f"No {self._kind} registered as {name!r}") from None

    def names(self) -> List[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions


class OrchestrationRegistry(_Registry[Callable]):
    """Orchestration functions ``fn(ctx, input)`` keyed by workflow type."""

    _missing = OrchestrationNotRegistered
    _kind = "orchestration"


class ActivityRegistry(_Registry[Callable]):
    """Activity functions ``fn(ctx, input)``, sync or async, keyed by name."""

    _missing = ActivityNotRegistered
    _kind = "activity"
