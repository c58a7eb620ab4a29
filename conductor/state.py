"""Pure workflow/job state machine.

Nothing here touches the store or the queue. The orchestrator loads the
current rows, asks these functions what to do, and performs the returned
action. That keeps sequencing testable without a broker.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Sequence, Union

from .persistence.models import Job, JobStatus, WorkflowStatus

WORKFLOW_TRANSITIONS: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.QUEUED}),
    WorkflowStatus.QUEUED: frozenset(
        {WorkflowStatus.RUNNING, WorkflowStatus.COMPLETED, WorkflowStatus.FAILED}
    ),
    WorkflowStatus.RUNNING: frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED}),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
}

JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED})


def can_transition_workflow(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    return target in WORKFLOW_TRANSITIONS[current]


def can_transition_job(current: JobStatus, target: JobStatus) -> bool:
    return target in JOB_TRANSITIONS[current]


def workflow_sources(target: WorkflowStatus) -> FrozenSet[WorkflowStatus]:
    """Statuses from which ``target`` may be entered."""
    return frozenset(s for s, allowed in WORKFLOW_TRANSITIONS.items() if target in allowed)


# ----------------------------------------------------------------------
# Actions


@dataclass(frozen=True)
class DispatchJob:
    job: Job


@dataclass(frozen=True)
class CompleteWorkflow:
    pass


@dataclass(frozen=True)
class Wait:
    """A job of the workflow is still running."""

    job: Job


@dataclass(frozen=True)
class Halt:
    """A job failed; nothing more runs for this workflow."""

    job: Job


Action = Union[DispatchJob, CompleteWorkflow, Wait, Halt]


def next_action(jobs: Sequence[Job]) -> Action:
    """Decide what happens next for a workflow given all of its jobs."""
    failed = [j for j in jobs if j.status == JobStatus.FAILED]
    if failed:
        return Halt(failed[0])
    running = [j for j in jobs if j.status == JobStatus.RUNNING]
    if running:
        return Wait(running[0])
    pending = [j for j in jobs if j.status == JobStatus.PENDING]
    if not pending:
        return CompleteWorkflow()
    return DispatchJob(min(pending, key=lambda j: (j.priority, j.id)))


# ----------------------------------------------------------------------
# Job outcomes


@dataclass(frozen=True)
class JobOutcome:
    """Result of running one job's step."""

    result: Optional[dict] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class JobTransition:
    job_status: JobStatus
    workflow_status: Optional[WorkflowStatus]
    advance: bool


def on_job_finished(job: Job, outcome: JobOutcome) -> JobTransition:
    """Translate a step outcome into the job/workflow moves to persist.

    On success the workflow keeps its status and the sequence advances. On
    failure the workflow fails and the sequence halts.
    """
    target = JobStatus.COMPLETED if outcome.succeeded else JobStatus.FAILED
    if not can_transition_job(job.status, target):
        raise ValueError(f"Job {job.id} is {job.status.value}, not running")
    if outcome.succeeded:
        return JobTransition(target, None, advance=True)
    return JobTransition(target, WorkflowStatus.FAILED, advance=False)
