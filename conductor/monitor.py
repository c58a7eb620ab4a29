"""System health monitor.

Periodically samples store and queue reachability, process memory and coarse
workflow/job counts. It only reads orchestrator state; the one thing it writes
is an alert row in ``system_logs`` when something looks wrong.
"""

from __future__ import annotations

import asyncio
import logging
import os
import resource
import sys
import time
from datetime import datetime, timezone
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field

from .persistence import ACTIVE_WORKFLOW_STATUSES, JobStatus, WorkflowRepository
from .transports import BaseTransport

logger = logging.getLogger(__name__)

_START_TIME = time.monotonic()


class DependencyHealth(BaseModel):
    status: Literal["unknown", "healthy", "unhealthy"] = "unknown"
    response_time_ms: float = 0.0
    error: Optional[str] = None


class MemoryUsage(BaseModel):
    used_mb: float = 0.0
    total_mb: float = 0.0
    percentage: float = 0.0


class HealthMetrics(BaseModel):
    uptime: float = 0.0
    last_check: Optional[datetime] = None
    database: DependencyHealth = Field(default_factory=DependencyHealth)
    queue: DependencyHealth = Field(default_factory=DependencyHealth)
    memory: MemoryUsage = Field(default_factory=MemoryUsage)
    active_workflows: int = 0
    pending_jobs: int = 0


def _memory_usage() -> Tuple[float, float]:
    """Return (resident bytes, physical memory bytes) for this process."""
    page_size = os.sysconf("SC_PAGE_SIZE")
    total = os.sysconf("SC_PHYS_PAGES") * page_size
    try:
        with open("/proc/self/statm") as f:
            used = int(f.read().split()[1]) * page_size
    except OSError:
        # peak RSS; kilobytes on Linux, bytes on macOS
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        used = rss if sys.platform == "darwin" else rss * 1024
    return float(used), float(total)


class SystemHealthMonitor:
    """Samples system health on a fixed interval and raises alerts."""

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: BaseTransport,
        interval: float = 60.0,
        memory_threshold: float = 90.0,
        slow_database_ms: float = 1000.0,
        slow_queue_ms: float = 500.0,
    ) -> None:
        self._repository = repository
        self._transport = transport
        self.interval = interval
        self.memory_threshold = memory_threshold
        self.slow_database_ms = slow_database_ms
        self.slow_queue_ms = slow_queue_ms
        self.metrics = HealthMetrics()
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run an initial check, then keep checking in the background."""
        logger.info("Starting System Health Monitor...")
        self._stopped.clear()
        await self.perform_health_check()
        self._task = asyncio.create_task(self._run())
        logger.info("System Health Monitor started successfully")

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.perform_health_check()

    async def stop(self) -> None:
        self._stopped.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("System Health Monitor stopped")

    async def perform_health_check(self) -> HealthMetrics:
        start = time.monotonic()

        self.metrics.database = await self._check(
            self._repository.ping, "Database", self.slow_database_ms
        )
        self.metrics.queue = await self._check(
            self._transport.ping, "Queue", self.slow_queue_ms
        )
        self.check_system_resources()
        await self.check_workflow_metrics()

        self.metrics.last_check = datetime.now(timezone.utc)
        self.metrics.uptime = round(time.monotonic() - _START_TIME, 1)

        duration = (time.monotonic() - start) * 1000
        logger.info(
            f"Health check completed in {duration:.0f}ms",
            extra={
                "database": self.metrics.database.status,
                "queue": self.metrics.queue.status,
                "memory": f"{self.metrics.memory.percentage:.1f}%",
                "active_workflows": self.metrics.active_workflows,
                "pending_jobs": self.metrics.pending_jobs,
            },
        )

        if self.metrics.database.status == "unhealthy" or self.metrics.queue.status == "unhealthy":
            await self.send_alert("System health check failed")

        if self.metrics.memory.percentage > self.memory_threshold:
            await self.send_alert(
                f"High memory usage: {self.metrics.memory.percentage:.1f}%"
            )

        return self.metrics

    async def _check(self, ping, name: str, slow_ms: float) -> DependencyHealth:
        start = time.monotonic()
        try:
            await ping()
        except Exception as exc:  # any failure means the dependency is down
            logger.error(f"{name} health check failed: {exc}")
            return DependencyHealth(status="unhealthy", error=str(exc) or type(exc).__name__)

        response_time = (time.monotonic() - start) * 1000
        if response_time > slow_ms:
            logger.warning(f"{name} response time is high: {response_time:.0f}ms")
        return DependencyHealth(status="healthy", response_time_ms=round(response_time, 2))

    def check_system_resources(self) -> MemoryUsage:
        used, total = _memory_usage()
        self.metrics.memory = MemoryUsage(
            used_mb=round(used / 1024 / 1024, 1),
            total_mb=round(total / 1024 / 1024, 1),
            percentage=(used / total) * 100 if total else 0.0,
        )
        return self.metrics.memory

    async def check_workflow_metrics(self) -> None:
        if self.metrics.database.status == "unhealthy":
            return
        try:
            self.metrics.active_workflows = await self._repository.count_workflows(
                ACTIVE_WORKFLOW_STATUSES
            )
            self.metrics.pending_jobs = await self._repository.count_jobs(JobStatus.PENDING)
        except Exception as exc:
            logger.error(f"Error checking workflow metrics: {exc}")

    async def send_alert(self, message: str) -> None:
        logger.error(f"ALERT: {message}")
        try:
            await self._repository.record_alert(
                "alert", message, self.metrics.model_dump(mode="json")
            )
        except Exception as exc:
            logger.error(f"Error logging alert: {exc}")

    def get_metrics(self) -> HealthMetrics:
        return self.metrics
