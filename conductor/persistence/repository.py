"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from .models import Job, JobStatus, SystemLog, Workflow, WorkflowStatus


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every transition is a single-row conditional update, so concurrent
    workers never both claim the same job.
    """

    async def create_workflow(
        self,
        name: str,
        property_id: str | None = None,
        metadata: dict | None = None,
    ) -> Workflow:
        """Insert a ``pending`` workflow and return it with its new id."""

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        """Retrieve the workflow by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows ordered by id."""

    async def enqueue_jobs(
        self, workflow_id: int, node_names: Sequence[str]
    ) -> list[Job]:
        """Create one pending job per step and move the workflow to ``queued``.

        Raises ``WorkflowNotFoundError`` for an unknown id and
        ``WorkflowAlreadyQueuedError`` when the workflow is not ``pending``;
        in both cases nothing is written.
        """

    async def update_workflow_status(
        self,
        workflow_id: int,
        status: WorkflowStatus,
        expected: Iterable[WorkflowStatus] | None = None,
    ) -> bool:
        """Set the workflow status, only from ``expected`` when given.

        Returns ``True`` when a row was updated.
        """

    async def complete_workflow(
        self, workflow_id: int, expected: Iterable[WorkflowStatus] | None = None
    ) -> bool:
        """Mark the workflow completed and stamp ``completed_at``.

        When ``expected`` is given the update only applies from those statuses.
        """

    async def get_job(self, job_id: int) -> Job | None:
        """Retrieve a job by id."""

    async def list_jobs(self, workflow_id: int) -> list[Job]:
        """Return the workflow's jobs ordered by priority."""

    async def claim_job(self, job_id: int) -> Job | None:
        """Move a pending job to ``running``; ``None`` if it was not pending."""

    async def complete_job(self, job_id: int, result: dict[str, Any] | None) -> bool:
        """Record a successful run of a running job."""

    async def fail_job(self, job_id: int, error: str) -> bool:
        """Record a failed run of a running job."""

    async def count_workflows(self, statuses: Iterable[WorkflowStatus]) -> int:
        """Count workflows whose status is in ``statuses``."""

    async def count_jobs(self, status: JobStatus) -> int:
        """Count jobs with the given status."""

    async def record_alert(
        self, level: str, message: str, metadata: dict | None = None
    ) -> SystemLog:
        """Persist a system log entry."""

    async def list_alerts(self) -> list[SystemLog]:
        """Return all system log entries ordered by id."""

    async def ping(self) -> None:
        """Round-trip to the store; raise if it is unreachable."""
