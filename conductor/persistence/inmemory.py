"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Sequence

from ..errors import WorkflowAlreadyQueuedError, WorkflowNotFoundError
from .models import Job, JobStatus, SystemLog, Workflow, WorkflowStatus
from .repository import WorkflowRepository


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never hold a live reference to stored state.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, Workflow] = {}
        self._jobs: Dict[int, Job] = {}
        self._logs: Dict[int, SystemLog] = {}
        self._workflow_id = 0
        self._job_id = 0
        self._log_id = 0

    # ------------------------------------------------------------------
    async def create_workflow(
        self,
        name: str,
        property_id: str | None = None,
        metadata: dict | None = None,
    ) -> Workflow:
        self._workflow_id += 1
        now = _now()
        wf = Workflow(
            id=self._workflow_id,
            name=name,
            status=WorkflowStatus.PENDING,
            property_id=property_id,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        self._workflows[wf.id] = wf
        return wf.model_copy(deep=True)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[Workflow]:
        return [self._workflows[k].model_copy(deep=True) for k in sorted(self._workflows)]

    async def enqueue_jobs(
        self, workflow_id: int, node_names: Sequence[str]
    ) -> list[Job]:
        wf = self._workflows.get(workflow_id)
        if wf is None:
            raise WorkflowNotFoundError(workflow_id)
        if wf.status != WorkflowStatus.PENDING:
            raise WorkflowAlreadyQueuedError(workflow_id, wf.status.value)

        now = _now()
        jobs = []
        for index, node_name in enumerate(node_names):
            self._job_id += 1
            job = Job(
                id=self._job_id,
                workflow_id=workflow_id,
                node_name=node_name,
                status=JobStatus.PENDING,
                priority=index + 1,
                created_at=now,
            )
            self._jobs[job.id] = job
            jobs.append(job.model_copy(deep=True))
        wf.status = WorkflowStatus.QUEUED
        wf.updated_at = now
        return jobs

    async def update_workflow_status(
        self,
        workflow_id: int,
        status: WorkflowStatus,
        expected: Iterable[WorkflowStatus] | None = None,
    ) -> bool:
        wf = self._workflows.get(workflow_id)
        if wf is None:
            return False
        if expected is not None and wf.status not in set(expected):
            return False
        wf.status = status
        wf.updated_at = _now()
        return True

    async def complete_workflow(
        self, workflow_id: int, expected: Iterable[WorkflowStatus] | None = None
    ) -> bool:
        wf = self._workflows.get(workflow_id)
        if wf is None:
            return False
        if expected is not None and wf.status not in set(expected):
            return False
        now = _now()
        wf.status = WorkflowStatus.COMPLETED
        wf.completed_at = now
        wf.updated_at = now
        return True

    async def get_job(self, job_id: int) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(self, workflow_id: int) -> list[Job]:
        jobs = [j for j in self._jobs.values() if j.workflow_id == workflow_id]
        jobs.sort(key=lambda j: (j.priority, j.id))
        return [j.model_copy(deep=True) for j in jobs]

    async def claim_job(self, job_id: int) -> Job | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return None
        job.status = JobStatus.RUNNING
        job.started_at = _now()
        return job.model_copy(deep=True)

    async def complete_job(self, job_id: int, result: dict[str, Any] | None) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        job.status = JobStatus.COMPLETED
        job.completed_at = _now()
        job.result = result
        return True

    async def fail_job(self, job_id: int, error: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        job.status = JobStatus.FAILED
        job.completed_at = _now()
        job.error = error
        return True

    async def count_workflows(self, statuses: Iterable[WorkflowStatus]) -> int:
        wanted = set(statuses)
        return sum(1 for wf in self._workflows.values() if wf.status in wanted)

    async def count_jobs(self, status: JobStatus) -> int:
        return sum(1 for j in self._jobs.values() if j.status == status)

    async def record_alert(
        self, level: str, message: str, metadata: dict | None = None
    ) -> SystemLog:
        self._log_id += 1
        entry = SystemLog(
            id=self._log_id,
            level=level,
            message=message,
            metadata=dict(metadata or {}),
            created_at=_now(),
        )
        self._logs[entry.id] = entry
        return entry.model_copy(deep=True)

    async def list_alerts(self) -> list[SystemLog]:
        return [self._logs[k].model_copy(deep=True) for k in sorted(self._logs)]

    async def ping(self) -> None:
        return None
