"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Iterable, Sequence

import asyncpg

from ..errors import PersistenceError, WorkflowAlreadyQueuedError, WorkflowNotFoundError
from .models import Job, JobStatus, SystemLog, Workflow, WorkflowStatus
from .repository import WorkflowRepository

# connection refused, dropped sockets and connect timeouts included
_DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def _affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 1"
    return int(status.split()[-1])


def _workflow_from_record(r: asyncpg.Record) -> Workflow:
    return Workflow(
        id=r["id"],
        name=r["name"],
        status=r["status"],
        property_id=r["property_id"],
        metadata=r["metadata"] or {},
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        completed_at=r["completed_at"],
    )


def _job_from_record(r: asyncpg.Record) -> Job:
    return Job(
        id=r["id"],
        workflow_id=r["workflow_id"],
        node_name=r["node_name"],
        status=r["status"],
        priority=r["priority"],
        created_at=r["created_at"],
        started_at=r["started_at"],
        completed_at=r["completed_at"],
        result=r["result"],
        error=r["error"],
    )


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        try:
            await conn.set_type_codec(
                "jsonb",
                encoder=lambda v: json.dumps(v, default=str),
                decoder=json.loads,
                schema="pg_catalog",
            )
            if not self._initialized:
                await self._ensure_schema(conn)
                self._initialized = True
        except BaseException:
            await conn.close()
            raise
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                status VARCHAR(50) NOT NULL DEFAULT 'pending',
                property_id VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                completed_at TIMESTAMPTZ,
                metadata JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id SERIAL PRIMARY KEY,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                node_name VARCHAR(255) NOT NULL,
                status VARCHAR(50) NOT NULL DEFAULT 'pending',
                priority INTEGER NOT NULL,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                result JSONB,
                error TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_workflow ON jobs (workflow_id, status, priority)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS system_logs (
                id SERIAL PRIMARY KEY,
                level VARCHAR(20) NOT NULL,
                message TEXT NOT NULL,
                metadata JSONB,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    async def _write(self, query: str, *params: Any) -> str:
        conn = None
        try:
            conn = await self._connect()
            return await conn.execute(query, *params)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc) or type(exc).__name__) from exc
        finally:
            if conn is not None:
                await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = None
        try:
            conn = await self._connect()
            return await conn.fetchrow(query, *params)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc) or type(exc).__name__) from exc
        finally:
            if conn is not None:
                await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = None
        try:
            conn = await self._connect()
            return await conn.fetch(query, *params)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc) or type(exc).__name__) from exc
        finally:
            if conn is not None:
                await conn.close()

    # ------------------------------------------------------------------
    async def create_workflow(
        self,
        name: str,
        property_id: str | None = None,
        metadata: dict | None = None,
    ) -> Workflow:
        row = await self._fetchrow(
            """
            INSERT INTO workflows (name, status, property_id, metadata)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            name,
            WorkflowStatus.PENDING.value,
            property_id,
            metadata or {},
        )
        return _workflow_from_record(row)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        row = await self._fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
        return _workflow_from_record(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await self._fetch("SELECT * FROM workflows ORDER BY id")
        return [_workflow_from_record(r) for r in rows]

    async def enqueue_jobs(
        self, workflow_id: int, node_names: Sequence[str]
    ) -> list[Job]:
        conn = None
        try:
            conn = await self._connect()
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM workflows WHERE id = $1 FOR UPDATE",
                    workflow_id,
                )
                if row is None:
                    raise WorkflowNotFoundError(workflow_id)
                if row["status"] != WorkflowStatus.PENDING.value:
                    raise WorkflowAlreadyQueuedError(workflow_id, row["status"])
                await conn.executemany(
                    "INSERT INTO jobs (workflow_id, node_name, status, priority) VALUES ($1, $2, $3, $4)",
                    [
                        (workflow_id, node_name, JobStatus.PENDING.value, index + 1)
                        for index, node_name in enumerate(node_names)
                    ],
                )
                await conn.execute(
                    "UPDATE workflows SET status = $1, updated_at = CURRENT_TIMESTAMP WHERE id = $2",
                    WorkflowStatus.QUEUED.value,
                    workflow_id,
                )
            rows = await conn.fetch(
                "SELECT * FROM jobs WHERE workflow_id = $1 ORDER BY priority ASC, id ASC",
                workflow_id,
            )
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(str(exc) or type(exc).__name__) from exc
        finally:
            if conn is not None:
                await conn.close()
        return [_job_from_record(r) for r in rows]

    async def update_workflow_status(
        self,
        workflow_id: int,
        status: WorkflowStatus,
        expected: Iterable[WorkflowStatus] | None = None,
    ) -> bool:
        if expected is None:
            result = await self._write(
                "UPDATE workflows SET status = $1, updated_at = CURRENT_TIMESTAMP WHERE id = $2",
                status.value,
                workflow_id,
            )
        else:
            result = await self._write(
                """
                UPDATE workflows SET status = $1, updated_at = CURRENT_TIMESTAMP
                WHERE id = $2 AND status = ANY($3::text[])
                """,
                status.value,
                workflow_id,
                [s.value for s in expected],
            )
        return _affected(result) == 1

    async def complete_workflow(
        self, workflow_id: int, expected: Iterable[WorkflowStatus] | None = None
    ) -> bool:
        query = """
            UPDATE workflows
            SET status = $1, completed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = $2
            """
        params: list[Any] = [WorkflowStatus.COMPLETED.value, workflow_id]
        if expected is not None:
            query += " AND status = ANY($3::text[])"
            params.append([s.value for s in expected])
        result = await self._write(query, *params)
        return _affected(result) == 1

    async def get_job(self, job_id: int) -> Job | None:
        row = await self._fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
        return _job_from_record(row) if row else None

    async def list_jobs(self, workflow_id: int) -> list[Job]:
        rows = await self._fetch(
            "SELECT * FROM jobs WHERE workflow_id = $1 ORDER BY priority ASC, id ASC",
            workflow_id,
        )
        return [_job_from_record(r) for r in rows]

    async def claim_job(self, job_id: int) -> Job | None:
        row = await self._fetchrow(
            """
            UPDATE jobs SET status = $1, started_at = CURRENT_TIMESTAMP
            WHERE id = $2 AND status = $3
            RETURNING *
            """,
            JobStatus.RUNNING.value,
            job_id,
            JobStatus.PENDING.value,
        )
        return _job_from_record(row) if row else None

    async def complete_job(self, job_id: int, result: dict[str, Any] | None) -> bool:
        status = await self._write(
            """
            UPDATE jobs SET status = $1, completed_at = CURRENT_TIMESTAMP, result = $2
            WHERE id = $3 AND status = $4
            """,
            JobStatus.COMPLETED.value,
            result,
            job_id,
            JobStatus.RUNNING.value,
        )
        return _affected(status) == 1

    async def fail_job(self, job_id: int, error: str) -> bool:
        status = await self._write(
            """
            UPDATE jobs SET status = $1, completed_at = CURRENT_TIMESTAMP, error = $2
            WHERE id = $3 AND status = $4
            """,
            JobStatus.FAILED.value,
            error,
            job_id,
            JobStatus.RUNNING.value,
        )
        return _affected(status) == 1

    async def count_workflows(self, statuses: Iterable[WorkflowStatus]) -> int:
        row = await self._fetchrow(
            "SELECT COUNT(*) AS n FROM workflows WHERE status = ANY($1::text[])",
            [s.value for s in statuses],
        )
        return int(row["n"])

    async def count_jobs(self, status: JobStatus) -> int:
        row = await self._fetchrow(
            "SELECT COUNT(*) AS n FROM jobs WHERE status = $1", status.value
        )
        return int(row["n"])

    async def record_alert(
        self, level: str, message: str, metadata: dict | None = None
    ) -> SystemLog:
        row = await self._fetchrow(
            "INSERT INTO system_logs (level, message, metadata) VALUES ($1, $2, $3) RETURNING *",
            level,
            message,
            metadata or {},
        )
        return SystemLog(
            id=row["id"],
            level=row["level"],
            message=row["message"],
            metadata=row["metadata"] or {},
            created_at=row["created_at"],
        )

    async def list_alerts(self) -> list[SystemLog]:
        rows = await self._fetch("SELECT * FROM system_logs ORDER BY id")
        return [
            SystemLog(
                id=r["id"],
                level=r["level"],
                message=r["message"],
                metadata=r["metadata"] or {},
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def ping(self) -> None:
        await self._fetchrow("SELECT 1")
