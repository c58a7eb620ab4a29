"""Step handler interface."""

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable


@runtime_checkable
class StepHandler(Protocol):
    """A unit of business logic run for one job.

    Implementations return a JSON-serializable result on success and raise on
    failure; the orchestrator records either outcome on the job.
    """

    async def execute(self, step_name: str, workflow_id: int) -> Dict[str, Any]:
        ...
