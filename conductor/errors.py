"""
Exception types raised by the orchestrator and its collaborators.

- NotFoundError: a workflow or job id does not exist
- ConfigurationMissingError: a required dependency is unavailable at startup
- StepExecutionError: a step handler failed; recorded on the job and workflow
- PersistenceError: a store write failed mid-transition

None of these trigger an automatic retry.
"""

from __future__ import annotations

from typing import Optional


class ConductorError(Exception):
    """Base exception for conductor."""
    pass


class NotFoundError(ConductorError):
    pass


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: int) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class WorkflowAlreadyQueuedError(ConductorError):
    """Raised when a workflow that already left ``pending`` is queued again."""

    def __init__(self, workflow_id: int, status: str) -> None:
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is already {status}")


class ConfigurationMissingError(ConductorError):
    """A required backend, driver or setting is not available."""
    pass


class PersistenceError(ConductorError):
    """A write against the workflow store failed."""
    pass


class StepExecutionError(ConductorError):
    """A step handler raised or could not be run.

    The job and its workflow are already marked ``failed`` by the time this
    reaches the queue consumer.
    """

    def __init__(
        self,
        node_name: str,
        message: str,
        job_id: Optional[int] = None,
        workflow_id: Optional[int] = None,
    ) -> None:
        self.node_name = node_name
        self.job_id = job_id
        self.workflow_id = workflow_id
        super().__init__(message)


class UnknownStepError(StepExecutionError):
    def __init__(self, node_name: str) -> None:
        super().__init__(node_name, f"No step handler registered for '{node_name}'")


class StepTimeoutError(StepExecutionError):
    def __init__(self, node_name: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(node_name, f"Step '{node_name}' timed out after {timeout}s")
