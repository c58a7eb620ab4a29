"""Workflow orchestrator: expands workflows into jobs and drives them in order."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from . import plans
from .contracts import JobDispatch
from .errors import (
    ConductorError,
    ConfigurationMissingError,
    JobNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowNotFoundError,
)
from .nodes import StepRegistry, default_registry
from .persistence import (
    JobStatus,
    WorkflowRepository,
    WorkflowStatus,
    WorkflowStatusReport,
)
from .state import (
    CompleteWorkflow,
    DispatchJob,
    Halt,
    JobOutcome,
    Wait,
    can_transition_workflow,
    next_action,
    on_job_finished,
    workflow_sources,
)
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Owns the workflow and job lifecycle.

    Sequencing decisions are made against the repository; step execution
    happens in whichever worker the transport delivers the dispatch to. Job
    ``k + 1`` is only published once job ``k`` has completed, which keeps each
    workflow strictly sequential while independent workflows run concurrently.

    ``active_workflows`` is a per-instance cache of workflows this instance
    has dispatched work for. The repository stays the source of truth and the
    cache may be empty.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: BaseTransport,
        registry: Optional[StepRegistry] = None,
        topic: str = "conductor-jobs",
        step_timeout: Optional[float] = None,
    ) -> None:
        if repository is None:
            raise ConfigurationMissingError("A workflow repository is required")
        if transport is None:
            raise ConfigurationMissingError("A transport is required")
        self._repository = repository
        self._transport = transport
        self.registry = registry if registry is not None else default_registry()
        self.topic = topic
        self.step_timeout = step_timeout
        self.active_workflows: Set[int] = set()

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    async def initialize(self) -> None:
        """Connect the transport."""
        await self._transport.connect()
        logger.info(
            f"Workflow Orchestrator initialized with steps: {', '.join(self.registry.names())}"
        )

    # ------------------------------------------------------------------
    # Workflow lifecycle

    async def create_workflow(
        self, property_id: Optional[str], workflow_type: str = "full_listing"
    ) -> int:
        """Create a workflow for ``property_id`` and queue it for execution."""
        try:
            workflow = await self._repository.create_workflow(
                workflow_type, property_id, {"type": workflow_type}
            )
        except ConductorError:
            logger.exception("Error creating workflow")
            raise

        logger.info(f"Created workflow {workflow.id} for property {property_id}")
        await self.queue_workflow(workflow.id)
        return workflow.id

    async def queue_workflow(self, workflow_id: int) -> None:
        """Expand the workflow into jobs and dispatch the first one.

        Only valid once per workflow: a workflow that already left ``pending``
        raises ``WorkflowAlreadyQueuedError`` and no jobs are added.
        """
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        execution_plan = plans.resolve(workflow.name)
        try:
            jobs = await self._repository.enqueue_jobs(workflow_id, execution_plan)
        except ConductorError as exc:
            logger.error(f"Error queueing workflow {workflow_id}: {exc}")
            raise

        logger.info(f"Queued {len(jobs)} jobs for workflow {workflow_id}")
        missing = [step for step in execution_plan if step not in self.registry]
        if missing:
            logger.warning(
                f"Workflow {workflow_id} has steps with no handler: {', '.join(missing)}"
            )
        await self.process_next_job(workflow_id)

    async def process_next_job(self, workflow_id: int) -> Optional[JobDispatch]:
        """Publish the next pending job, or complete the workflow if none remain.

        Returns the published dispatch without waiting for it to run. Only
        ``queued`` and ``running`` workflows are advanced; for any other
        status nothing happens.
        """
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if not can_transition_workflow(workflow.status, WorkflowStatus.COMPLETED):
            logger.info(
                f"Workflow {workflow_id} is {workflow.status.value}; nothing to dispatch"
            )
            return None

        jobs = await self._repository.list_jobs(workflow_id)
        action = next_action(jobs)

        if isinstance(action, CompleteWorkflow):
            await self.complete_workflow(workflow_id)
            return None
        if isinstance(action, Wait):
            logger.info(
                f"Workflow {workflow_id} still running job {action.job.id} ({action.job.node_name})"
            )
            return None
        if isinstance(action, Halt):
            logger.info(
                f"Workflow {workflow_id} halted after job {action.job.id} ({action.job.node_name}) failed"
            )
            return None
        if not isinstance(action, DispatchJob):
            raise TypeError(f"Unexpected action for workflow {workflow_id}: {action!r}")

        job = action.job
        message = JobDispatch(job_id=job.id, workflow_id=workflow_id, node_name=job.node_name)
        await self._transport.publish(self.topic, message)
        self.active_workflows.add(workflow_id)
        logger.info(f"Queued job {job.id} ({job.node_name}) for processing")
        return message

    async def process_job(self, message: JobDispatch) -> Optional[Dict[str, Any]]:
        """Run one delivered job and advance or halt its workflow.

        Returns the step result, or ``None`` when the delivery was a duplicate
        of a job that is no longer pending.
        """
        job = await self._repository.claim_job(message.job_id)
        if job is None:
            existing = await self._repository.get_job(message.job_id)
            if existing is None:
                raise JobNotFoundError(message.job_id)
            logger.warning(
                f"Skipping delivery of job {existing.id} ({existing.node_name}): already {existing.status.value}"
            )
            return None

        workflow_id = job.workflow_id
        logger.info(f"Processing job {job.id}: {job.node_name}")
        await self._repository.update_workflow_status(
            workflow_id, WorkflowStatus.RUNNING, expected=workflow_sources(WorkflowStatus.RUNNING)
        )

        error: Optional[BaseException] = None
        result: Optional[Dict[str, Any]] = None
        try:
            result = await self.execute_node(job.node_name, workflow_id)
        except Exception as exc:
            error = exc

        outcome = JobOutcome(
            result=result,
            error=None if error is None else (str(error) or type(error).__name__),
        )
        transition = on_job_finished(job, outcome)

        if transition.job_status == JobStatus.COMPLETED:
            await self._repository.complete_job(job.id, result)
            logger.info(f"Completed job {job.id}: {job.node_name}")
        else:
            logger.error(f"Error processing job {job.id}: {outcome.error}")
            await self._repository.fail_job(job.id, outcome.error)

        if transition.workflow_status is not None:
            await self._repository.update_workflow_status(
                workflow_id,
                transition.workflow_status,
                expected=workflow_sources(transition.workflow_status),
            )

        if transition.advance:
            await self.process_next_job(workflow_id)
            return result

        self.active_workflows.discard(workflow_id)

        if isinstance(error, StepExecutionError):
            error.job_id = job.id
            error.workflow_id = workflow_id
            raise error
        raise StepExecutionError(
            job.node_name, outcome.error, job_id=job.id, workflow_id=workflow_id
        ) from error

    async def execute_node(self, node_name: str, workflow_id: int) -> Dict[str, Any]:
        """Run the registered handler for ``node_name``."""
        handler = self.registry.get(node_name)
        call = handler.execute(node_name, workflow_id)
        if self.step_timeout is None:
            result = await call
        else:
            try:
                result = await asyncio.wait_for(call, timeout=self.step_timeout)
            except asyncio.TimeoutError:
                raise StepTimeoutError(node_name, self.step_timeout) from None
        if result is None:
            return {}
        return result if isinstance(result, dict) else {"result": result}

    async def complete_workflow(self, workflow_id: int) -> bool:
        """Mark a ``queued`` or ``running`` workflow completed.

        Returns ``False`` when the workflow was in any other status.
        """
        completed = await self._repository.complete_workflow(
            workflow_id, expected=workflow_sources(WorkflowStatus.COMPLETED)
        )
        if not completed:
            workflow = await self._repository.get_workflow(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            logger.warning(
                f"Workflow {workflow_id} not completed: already {workflow.status.value}"
            )
            return False
        logger.info(f"Workflow {workflow_id} completed successfully")
        self.active_workflows.discard(workflow_id)
        return True

    async def get_workflow_status(self, workflow_id: int) -> WorkflowStatusReport:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        jobs = await self._repository.list_jobs(workflow_id)
        return WorkflowStatusReport(workflow=workflow, jobs=jobs)

    # ------------------------------------------------------------------
    # Queue consumer

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume dispatches from the topic and run them.

        Failed steps and store errors are nacked without requeue, which hands
        the message to the transport's failure channel; the loop keeps going.
        """
        async for raw_message, message in self._transport.subscribe(
            self.topic, lifespan=lifespan
        ):
            try:
                await self.process_job(message)
            except StepExecutionError as exc:
                logger.error(
                    f"Job {exc.job_id} ({exc.node_name}) failed for workflow {exc.workflow_id}: {exc}"
                )
                await self._transport.nack(raw_message, requeue=False)
                continue
            except ConductorError:
                logger.exception(f"Error handling dispatch {message.message_id}")
                await self._transport.nack(raw_message, requeue=False)
                continue
            await self._transport.ack(raw_message)
