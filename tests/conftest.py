import pytest

import conductor.persistence as persistence
from conductor.errors import StepExecutionError
from conductor.nodes import StepRegistry, default_registry
from conductor.orchestrator import WorkflowOrchestrator
from conductor.persistence import InMemoryWorkflowRepository
from conductor.transports.inmemory import InMemoryTransport


@pytest.fixture(autouse=True)
def _reset_repository_singleton(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CONDUCTOR_DATABASE_URL", raising=False)
    monkeypatch.delenv("CONDUCTOR_TRANSPORT", raising=False)
    monkeypatch.delenv("CONDUCTOR_CONFIG", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def registry() -> StepRegistry:
    return default_registry()


@pytest.fixture
def orchestrator(repo, transport, registry):
    return WorkflowOrchestrator(repository=repo, transport=transport, registry=registry)


@pytest.fixture
def drain():
    """Deliver queued dispatches one by one until the topic is empty.

    Returns the step failures raised along the way.
    """

    async def _drain(orchestrator: WorkflowOrchestrator, limit: int = 200):
        failures = []
        for _ in range(limit):
            raw = await orchestrator.transport.get_nowait(orchestrator.topic)
            if raw is None:
                break
            try:
                await orchestrator.process_job(raw[2])
            except StepExecutionError as exc:
                failures.append(exc)
        return failures

    return _drain
