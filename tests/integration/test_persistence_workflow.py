import asyncio

import pytest

from conductor.nodes import default_registry
from conductor.orchestrator import WorkflowOrchestrator
from conductor.persistence import JobStatus, SQLiteWorkflowRepository, WorkflowStatus
from conductor.transports.inmemory import InMemoryTransport


@pytest.mark.asyncio
async def test_workflow_survives_restart_and_duplicate_delivery(tmp_path):
    transport = InMemoryTransport()
    repo_path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(repo_path)
    orchestrator = WorkflowOrchestrator(repo, transport, registry=default_registry())

    workflow_id = await orchestrator.create_workflow("P-1", "full_listing")

    raw = await transport.get_nowait(orchestrator.topic)
    first = raw[2]
    assert first.node_name == "mls_data_ingester"
    assert (await orchestrator.process_job(first))["status"] == "success"

    # redelivery of an already-completed job is ignored
    assert await orchestrator.process_job(first.model_copy(deep=True)) is None
    assert transport.pending(orchestrator.topic) == 1

    # a fresh process picks up where the first one stopped
    repo = SQLiteWorkflowRepository(repo_path)
    orchestrator = WorkflowOrchestrator(repo, transport, registry=default_registry())
    await orchestrator.start(lifespan=1.0)

    wf = await repo.get_workflow(workflow_id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.completed_at is not None
    jobs = await repo.list_jobs(workflow_id)
    assert len(jobs) == 10
    assert all(j.status == JobStatus.COMPLETED for j in jobs)
    started = [j.started_at for j in jobs]
    assert started == sorted(started)


@pytest.mark.asyncio
async def test_failure_halts_workflow_end_to_end(tmp_path, monkeypatch):
    from conductor import plans

    monkeypatch.setitem(plans.PLANS, "three_step", ["collect", "explode", "publish"])

    registry = default_registry()

    async def ok(step_name, workflow_id):
        return {"step": step_name}

    async def explode(step_name, workflow_id):
        raise RuntimeError("upstream API returned 500")

    registry.register("collect", ok)
    registry.register("explode", explode)
    registry.register("publish", ok)

    transport = InMemoryTransport()
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    orchestrator = WorkflowOrchestrator(repo, transport, registry=registry)

    workflow_id = await orchestrator.create_workflow("P-2", "three_step")
    await asyncio.wait_for(orchestrator.start(lifespan=0.5), timeout=5)

    report = await orchestrator.get_workflow_status(workflow_id)
    assert report.workflow.status == WorkflowStatus.FAILED
    assert [j.status for j in report.jobs] == [
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.PENDING,
    ]
    assert report.jobs[1].error == "upstream API returned 500"
    assert [m.node_name for m in transport.failed[orchestrator.topic]] == ["explode"]
    assert transport.pending(orchestrator.topic) == 0
