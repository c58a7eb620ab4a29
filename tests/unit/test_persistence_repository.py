import pytest

from conductor.errors import WorkflowAlreadyQueuedError, WorkflowNotFoundError
from conductor.persistence import (
    ACTIVE_WORKFLOW_STATUSES,
    InMemoryWorkflowRepository,
    JobStatus,
    SQLiteWorkflowRepository,
    WorkflowStatus,
    get_repository,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "wf.db")
    return InMemoryWorkflowRepository()


@pytest.mark.asyncio
async def test_repository_workflow_lifecycle(repository):
    wf = await repository.create_workflow("test", "P1", {"type": "test"})
    assert wf.id >= 1
    assert wf.status == WorkflowStatus.PENDING
    assert wf.completed_at is None

    jobs = await repository.enqueue_jobs(wf.id, ["a", "b"])
    assert [(j.node_name, j.priority) for j in jobs] == [("a", 1), ("b", 2)]
    assert (await repository.get_workflow(wf.id)).status == WorkflowStatus.QUEUED

    nxt = jobs[0]

    claimed = await repository.claim_job(nxt.id)
    assert claimed.status == JobStatus.RUNNING
    assert claimed.started_at is not None
    assert await repository.complete_job(nxt.id, {"x": 1})

    nxt = jobs[1]
    await repository.claim_job(nxt.id)
    assert await repository.fail_job(nxt.id, "boom")

    jobs = await repository.list_jobs(wf.id)
    assert jobs[0].status == JobStatus.COMPLETED
    assert jobs[0].result == {"x": 1}
    assert jobs[1].status == JobStatus.FAILED
    assert jobs[1].error == "boom"
    assert jobs[1].completed_at is not None

    assert await repository.complete_workflow(wf.id)
    wf = await repository.get_workflow(wf.id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.completed_at is not None
    assert wf.metadata == {"type": "test"}
    assert wf.property_id == "P1"


@pytest.mark.asyncio
async def test_repository_ids_are_monotonic(repository):
    first = await repository.create_workflow("test")
    second = await repository.create_workflow("test")
    assert second.id > first.id
    assert [w.id for w in await repository.list_workflows()] == [first.id, second.id]


@pytest.mark.asyncio
async def test_enqueue_jobs_only_once(repository):
    wf = await repository.create_workflow("test")
    await repository.enqueue_jobs(wf.id, ["a"])

    with pytest.raises(WorkflowAlreadyQueuedError):
        await repository.enqueue_jobs(wf.id, ["a"])
    assert len(await repository.list_jobs(wf.id)) == 1

    with pytest.raises(WorkflowNotFoundError):
        await repository.enqueue_jobs(999, ["a"])


@pytest.mark.asyncio
async def test_claim_is_conditional(repository):
    wf = await repository.create_workflow("test")
    (job,) = await repository.enqueue_jobs(wf.id, ["a"])

    assert await repository.claim_job(job.id) is not None
    assert await repository.claim_job(job.id) is None
    assert await repository.claim_job(12345) is None

    assert await repository.complete_job(job.id, {})
    # a finished job cannot be finished again
    assert not await repository.complete_job(job.id, {})
    assert not await repository.fail_job(job.id, "late")
    assert (await repository.get_job(job.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_update_workflow_status_respects_expected(repository):
    wf = await repository.create_workflow("test")
    await repository.enqueue_jobs(wf.id, ["a"])

    assert not await repository.update_workflow_status(
        wf.id, WorkflowStatus.RUNNING, expected=[WorkflowStatus.PENDING]
    )
    assert await repository.update_workflow_status(
        wf.id, WorkflowStatus.RUNNING, expected=[WorkflowStatus.QUEUED]
    )
    assert (await repository.get_workflow(wf.id)).status == WorkflowStatus.RUNNING
    assert not await repository.update_workflow_status(999, WorkflowStatus.FAILED)


@pytest.mark.asyncio
async def test_counts_and_alerts(repository):
    a = await repository.create_workflow("test")
    b = await repository.create_workflow("test")
    await repository.enqueue_jobs(a.id, ["x", "y"])
    await repository.enqueue_jobs(b.id, ["x"])
    await repository.complete_workflow(b.id)

    assert await repository.count_workflows(ACTIVE_WORKFLOW_STATUSES) == 1
    assert await repository.count_workflows([WorkflowStatus.COMPLETED]) == 1
    assert await repository.count_jobs(JobStatus.PENDING) == 3

    entry = await repository.record_alert("alert", "System health check failed", {"queue": "down"})
    assert entry.id >= 1
    alerts = await repository.list_alerts()
    assert [(e.level, e.message, e.metadata) for e in alerts] == [
        ("alert", "System health check failed", {"queue": "down"})
    ]

    await repository.ping()


@pytest.mark.asyncio
async def test_sqlite_state_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    wf = await repo.create_workflow("test", "P9")
    await repo.enqueue_jobs(wf.id, ["a"])

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_workflow(wf.id)).status == WorkflowStatus.QUEUED
    assert [j.node_name for j in await reopened.list_jobs(wf.id)] == ["a"]


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    assert isinstance(get_repository(), InMemoryWorkflowRepository)
    assert get_repository() is get_repository()

    repo = get_repository(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(repo, SQLiteWorkflowRepository)

    import conductor.persistence as persistence

    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.setenv("DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    assert isinstance(get_repository(), SQLiteWorkflowRepository)
    assert (tmp_path / "env.db").exists()


def test_get_repository_rejects_unknown_scheme():
    from conductor.errors import ConfigurationMissingError

    with pytest.raises(ConfigurationMissingError):
        get_repository("mysql://localhost/db")


@pytest.mark.asyncio
async def test_complete_workflow_respects_expected(repository):
    wf = await repository.create_workflow("test")
    guard = [WorkflowStatus.QUEUED, WorkflowStatus.RUNNING]

    assert not await repository.complete_workflow(wf.id, expected=guard)
    stored = await repository.get_workflow(wf.id)
    assert stored.status == WorkflowStatus.PENDING
    assert stored.completed_at is None

    await repository.enqueue_jobs(wf.id, ["a"])
    assert await repository.complete_workflow(wf.id, expected=guard)
    assert not await repository.complete_workflow(wf.id, expected=guard)
    assert not await repository.complete_workflow(999, expected=guard)


@pytest.mark.asyncio
async def test_sqlite_driver_errors_become_persistence_errors(tmp_path):
    from conductor.errors import PersistenceError

    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    wf = await repo.create_workflow("test")
    repo._conn.execute("DROP TABLE jobs")
    repo._conn.commit()

    with pytest.raises(PersistenceError):
        await repo.list_jobs(wf.id)
    with pytest.raises(PersistenceError):
        await repo.get_job(1)
    with pytest.raises(PersistenceError):
        await repo.claim_job(1)
    with pytest.raises(PersistenceError):
        await repo.enqueue_jobs(wf.id, ["a"])
    assert (await repo.get_workflow(wf.id)).status == WorkflowStatus.PENDING


def test_sqlite_unopenable_path_raises_persistence_error(tmp_path):
    from conductor.errors import PersistenceError

    with pytest.raises(PersistenceError):
        SQLiteWorkflowRepository(tmp_path / "missing-dir" / "wf.db")
