"""Command line interface for running conductor workers and inspecting workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from conductor import plans
from conductor.config import ConductorConfig, load_config
from conductor.errors import ConductorError, WorkflowNotFoundError
from conductor.monitor import SystemHealthMonitor
from conductor.nodes import default_registry
from conductor.orchestrator import WorkflowOrchestrator
from conductor.persistence import get_repository
from conductor.state import TERMINAL_WORKFLOW_STATUSES
from conductor.transports import InMemoryTransport, get_transport

app = typer.Typer(help="CLI for conductor workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
plan_app = typer.Typer(help="Commands for inspecting execution plans")

app.add_typer(workflow_app, name="workflow")
app.add_typer(plan_app, name="plan")


def _build_orchestrator(config: ConductorConfig) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        repository=get_repository(),
        transport=get_transport(config=config),
        registry=default_registry(delay=config.orchestrator.placeholder_delay),
        topic=config.queue.topic,
        step_timeout=config.orchestrator.step_timeout,
    )


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """conductor CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("worker")
def worker(lifespan: Optional[float] = None) -> None:
    """
    Run a worker that consumes job dispatches from the queue.

    Each delivered job is executed by its registered step handler; on success
    the next job of the same workflow is dispatched.

    Example:
        conductor worker
        conductor worker --lifespan 300
    """
    config = load_config()
    orchestrator = _build_orchestrator(config)

    async def _run() -> None:
        await orchestrator.initialize()
        try:
            await orchestrator.start(lifespan=lifespan)
        finally:
            await orchestrator.transport.disconnect()

    typer.echo(f"Starting worker on topic: {orchestrator.topic}")
    asyncio.run(_run())


@app.command("monitor")
def monitor(once: bool = typer.Option(False, help="Take a single sample and exit")) -> None:
    """
    Run the system health monitor.

    Example:
        conductor monitor --once
        # Output: database: healthy (1.2ms)
        #         queue: healthy (0.4ms)
        #         memory: 3.1%
        #         active workflows: 2
        #         pending jobs: 7
    """
    config = load_config()
    health = SystemHealthMonitor(
        repository=get_repository(),
        transport=get_transport(config=config),
        interval=config.monitor.interval,
        memory_threshold=config.monitor.memory_threshold,
    )

    async def _sample() -> None:
        metrics = await health.perform_health_check()
        typer.echo(
            f"database: {metrics.database.status} ({metrics.database.response_time_ms}ms)"
        )
        typer.echo(f"queue: {metrics.queue.status} ({metrics.queue.response_time_ms}ms)")
        typer.echo(f"memory: {metrics.memory.percentage:.1f}%")
        typer.echo(f"active workflows: {metrics.active_workflows}")
        typer.echo(f"pending jobs: {metrics.pending_jobs}")

    async def _forever() -> None:
        await health.start()
        try:
            await asyncio.Event().wait()
        finally:
            await health.stop()

    asyncio.run(_sample() if once else _forever())


@workflow_app.command("create")
def workflow_create(
    property_id: str,
    workflow_type: str = typer.Option("full_listing", "--type", help="Workflow type label"),
    run: bool = typer.Option(
        False, help="Process the workflow in this process until it finishes"
    ),
) -> None:
    """
    Create a workflow and dispatch its first job.

    Example:
        conductor workflow create P-1001 --type full_listing
        # Output: Created workflow 1 (full_listing) for property P-1001
    """
    config = load_config()
    orchestrator = _build_orchestrator(config)

    async def _create() -> tuple[int, str]:
        await orchestrator.initialize()
        workflow_id = await orchestrator.create_workflow(property_id, workflow_type)
        if run:
            consumer = asyncio.create_task(orchestrator.start())
            try:
                while True:
                    wf = await orchestrator.repository.get_workflow(workflow_id)
                    if wf is None or wf.status in TERMINAL_WORKFLOW_STATUSES:
                        break
                    if consumer.done():
                        consumer.result()
                        break
                    await asyncio.sleep(0.05)
            finally:
                consumer.cancel()
                try:
                    await consumer
                except asyncio.CancelledError:
                    pass
        await orchestrator.transport.disconnect()
        report = await orchestrator.get_workflow_status(workflow_id)
        return workflow_id, report.workflow.status.value

    try:
        workflow_id, status = asyncio.run(_create())
    except ConductorError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Created workflow {workflow_id} ({workflow_type}) for property {property_id}")
    if run:
        typer.echo(f"Workflow {workflow_id}: {status}")
    elif isinstance(orchestrator.transport, InMemoryTransport):
        typer.secho(
            "Warning: the in-memory transport does not outlive this command; "
            "the workflow stays queued. Use --run or configure a shared transport.",
            fg=typer.colors.YELLOW,
        )


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their current status.

    Example:
        conductor workflow list
        # Output: 1    full_listing    P-1001    running
        #         2    test            P-1002    completed
    """
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.property_id or '-'}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """
    Show a workflow and its jobs in execution order.

    Example:
        conductor workflow show 1
        # Output: Workflow 1 (full_listing): running
        #         1. mls_data_ingester: completed (...)
        #         2. property_photos_collector: running
    """
    repo = get_repository()
    orchestrator = WorkflowOrchestrator(repository=repo, transport=get_transport("inmemory"))
    try:
        report = asyncio.run(orchestrator.get_workflow_status(workflow_id))
    except WorkflowNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    wf = report.workflow
    typer.echo(f"Workflow {wf.id} ({wf.name}): {wf.status.value}")
    if wf.property_id:
        typer.echo(f"Property: {wf.property_id}")
    if wf.completed_at:
        typer.echo(f"Completed at: {wf.completed_at}")
    for job in report.jobs:
        line = f"{job.priority}. {job.node_name}: {job.status.value}"
        if job.started_at or job.completed_at:
            line += f" ({job.started_at} -> {job.completed_at})"
        if job.error:
            line += f" error: {job.error}"
        typer.echo(line)


@plan_app.command("list")
def plan_list() -> None:
    """List the built-in workflow types and their step counts."""
    for name, steps in plans.available_plans().items():
        typer.echo(f"{name}\t{len(steps)} steps")


@plan_app.command("show")
def plan_show(workflow_type: str) -> None:
    """
    Show the steps a workflow type expands to.

    Unknown types show the fallback plan they would run.
    """
    for index, step in enumerate(plans.resolve(workflow_type), start=1):
        typer.echo(f"{index}. {step}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
