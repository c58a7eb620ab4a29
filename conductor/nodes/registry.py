"""Registry mapping step names to their handlers."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from ..errors import UnknownStepError
from ..plans import PLANS
from .base import StepHandler
from .placeholder import PlaceholderStep

StepFunc = Callable[[str, int], Awaitable[Dict[str, Any]]]


class _FunctionStep:
    def __init__(self, func: StepFunc) -> None:
        self._func = func
        self.__name__ = getattr(func, "__name__", repr(func))

    async def execute(self, step_name: str, workflow_id: int) -> Dict[str, Any]:
        return await self._func(step_name, workflow_id)


class StepRegistry:
    """Resolve a job's ``node_name`` to the handler that runs it.

    Lookups of unregistered names raise ``UnknownStepError`` so that only the
    affected job fails.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, StepHandler] = {}

    def register(self, name: str, handler: StepHandler | StepFunc) -> None:
        """Add or replace the handler for ``name``.

        Plain async functions taking ``(step_name, workflow_id)`` are accepted
        as well as objects with an ``execute`` coroutine.
        """
        if not isinstance(handler, StepHandler):
            handler = _FunctionStep(handler)
        self._handlers[name] = handler

    def step(self, name: str) -> Callable[[StepFunc], StepFunc]:
        """Decorator form of :meth:`register`."""

        def decorator(func: StepFunc) -> StepFunc:
            self.register(name, func)
            return func

        return decorator

    def get(self, name: str) -> StepHandler:
        try:
            return self._handlers[name]
        except KeyError:
            raise UnknownStepError(name) from None

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers


def default_registry(delay: float = 0.0) -> StepRegistry:
    """Registry with a placeholder for every step of every built-in plan."""
    registry = StepRegistry()
    placeholder = PlaceholderStep(delay=delay)
    for steps in PLANS.values():
        for name in steps:
            registry.register(name, placeholder)
    return registry
