import asyncio

import pytest

import conductor.monitor as monitor_module
from conductor.monitor import SystemHealthMonitor
from conductor.transports.inmemory import InMemoryTransport


class DownTransport(InMemoryTransport):
    async def ping(self) -> None:
        raise ConnectionError("broker unreachable")


@pytest.mark.asyncio
async def test_healthy_check_reports_counts(repo, transport, orchestrator):
    await orchestrator.create_workflow("P1", "full_listing")

    monitor = SystemHealthMonitor(repo, transport, memory_threshold=100.0)
    metrics = await monitor.perform_health_check()

    assert metrics.database.status == "healthy"
    assert metrics.queue.status == "healthy"
    assert metrics.active_workflows == 1
    assert metrics.pending_jobs == 10
    assert metrics.last_check is not None
    assert metrics.memory.total_mb > 0
    assert await repo.list_alerts() == []
    assert monitor.get_metrics() is metrics


@pytest.mark.asyncio
async def test_unhealthy_queue_records_alert(repo):
    monitor = SystemHealthMonitor(repo, DownTransport(), memory_threshold=100.0)
    metrics = await monitor.perform_health_check()

    assert metrics.database.status == "healthy"
    assert metrics.queue.status == "unhealthy"
    assert metrics.queue.error == "broker unreachable"

    alerts = await repo.list_alerts()
    assert [a.message for a in alerts] == ["System health check failed"]
    assert alerts[0].level == "alert"
    assert alerts[0].metadata["queue"]["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_memory_threshold_alert(repo, transport):
    monitor = SystemHealthMonitor(repo, transport, memory_threshold=-1.0)
    await monitor.perform_health_check()

    alerts = await repo.list_alerts()
    assert len(alerts) == 1
    assert alerts[0].message.startswith("High memory usage: ")
    assert alerts[0].message.endswith("%")


@pytest.mark.asyncio
async def test_memory_over_default_threshold_alerts(repo, transport, monkeypatch):
    mb = 1024 * 1024
    monkeypatch.setattr(monitor_module, "_memory_usage", lambda: (95.0 * mb, 100.0 * mb))

    monitor = SystemHealthMonitor(repo, transport)
    metrics = await monitor.perform_health_check()

    assert metrics.memory.percentage == pytest.approx(95.0)
    assert metrics.memory.used_mb == 95.0
    alerts = await repo.list_alerts()
    assert [a.message for a in alerts] == ["High memory usage: 95.0%"]
    assert alerts[0].metadata["memory"]["percentage"] == pytest.approx(95.0)


@pytest.mark.asyncio
async def test_memory_under_threshold_does_not_alert(repo, transport, monkeypatch):
    monkeypatch.setattr(monitor_module, "_memory_usage", lambda: (50.0, 100.0))

    await SystemHealthMonitor(repo, transport).perform_health_check()

    assert await repo.list_alerts() == []

@pytest.mark.asyncio
async def test_alert_persistence_failure_is_logged(transport, caplog):
    class BrokenRepository:
        async def ping(self):
            raise RuntimeError("db down")

        async def record_alert(self, level, message, metadata=None):
            raise RuntimeError("db down")

    monitor = SystemHealthMonitor(BrokenRepository(), transport, memory_threshold=100.0)
    metrics = await monitor.perform_health_check()

    assert metrics.database.status == "unhealthy"
    assert "Error logging alert" in caplog.text


@pytest.mark.asyncio
async def test_monitor_runs_on_interval(repo, transport):
    monitor = SystemHealthMonitor(repo, transport, interval=0.02, memory_threshold=100.0)
    await monitor.start()
    first = monitor.metrics.last_check
    assert first is not None

    await asyncio.sleep(0.1)
    await monitor.stop()

    assert monitor.metrics.last_check > first
    assert monitor._task is None
