"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from ..errors import PersistenceError, WorkflowAlreadyQueuedError, WorkflowNotFoundError
from .models import Job, JobStatus, SystemLog, Workflow, WorkflowStatus
from .repository import WorkflowRepository


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _workflow_from_row(r: sqlite3.Row) -> Workflow:
    return Workflow(
        id=r["id"],
        name=r["name"],
        status=r["status"],
        property_id=r["property_id"],
        metadata=json.loads(r["metadata"]) if r["metadata"] else {},
        created_at=_ts(r["created_at"]),
        updated_at=_ts(r["updated_at"]),
        completed_at=_ts(r["completed_at"]),
    )


def _job_from_row(r: sqlite3.Row) -> Job:
    return Job(
        id=r["id"],
        workflow_id=r["workflow_id"],
        node_name=r["node_name"],
        status=r["status"],
        priority=r["priority"],
        created_at=_ts(r["created_at"]),
        started_at=_ts(r["started_at"]),
        completed_at=_ts(r["completed_at"]),
        result=json.loads(r["result"]) if r["result"] else None,
        error=r["error"],
    )


def _log_from_row(r: sqlite3.Row) -> SystemLog:
    return SystemLog(
        id=r["id"],
        level=r["level"],
        message=r["message"],
        metadata=json.loads(r["metadata"]) if r["metadata"] else {},
        created_at=_ts(r["created_at"]),
    )


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                property_id TEXT,
                created_at TEXT,
                updated_at TEXT,
                completed_at TEXT,
                metadata TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id INTEGER NOT NULL REFERENCES workflows(id),
                node_name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                priority INTEGER NOT NULL,
                created_at TEXT,
                started_at TEXT,
                completed_at TEXT,
                result TEXT,
                error TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_workflow ON jobs (workflow_id, status, priority)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS system_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                level TEXT NOT NULL,
                message TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> sqlite3.Cursor:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(str(exc)) from exc
            return cur

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def _enqueue_jobs(self, workflow_id: int, node_names: Sequence[str]) -> list[int]:
        with self._lock:
            try:
                cur = self._conn.cursor()
                row = cur.execute(
                    "SELECT status FROM workflows WHERE id = ?", (workflow_id,)
                ).fetchone()
                if row is None:
                    raise WorkflowNotFoundError(workflow_id)
                if row["status"] != WorkflowStatus.PENDING.value:
                    raise WorkflowAlreadyQueuedError(workflow_id, row["status"])
                now = _now()
                job_ids = []
                for index, node_name in enumerate(node_names):
                    cur.execute(
                        "INSERT INTO jobs (workflow_id, node_name, status, priority, created_at) VALUES (?, ?, ?, ?, ?)",
                        (workflow_id, node_name, JobStatus.PENDING.value, index + 1, now),
                    )
                    job_ids.append(cur.lastrowid)
                cur.execute(
                    "UPDATE workflows SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (
                        WorkflowStatus.QUEUED.value,
                        now,
                        workflow_id,
                        WorkflowStatus.PENDING.value,
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(str(exc)) from exc
            return job_ids

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(
        self,
        name: str,
        property_id: str | None = None,
        metadata: dict | None = None,
    ) -> Workflow:
        now = _now()
        cur = await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflows (name, status, property_id, created_at, updated_at, metadata) VALUES (?, ?, ?, ?, ?, ?)",
            name,
            WorkflowStatus.PENDING.value,
            property_id,
            now,
            now,
            json.dumps(metadata or {}),
        )
        return await self.get_workflow(cur.lastrowid)

    async def get_workflow(self, workflow_id: int) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        return _workflow_from_row(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM workflows ORDER BY id"
        )
        return [_workflow_from_row(r) for r in rows]

    async def enqueue_jobs(
        self, workflow_id: int, node_names: Sequence[str]
    ) -> list[Job]:
        await asyncio.to_thread(self._enqueue_jobs, workflow_id, list(node_names))
        return await self.list_jobs(workflow_id)

    async def update_workflow_status(
        self,
        workflow_id: int,
        status: WorkflowStatus,
        expected: Iterable[WorkflowStatus] | None = None,
    ) -> bool:
        query = "UPDATE workflows SET status = ?, updated_at = ? WHERE id = ?"
        params: list[Any] = [status.value, _now(), workflow_id]
        if expected is not None:
            allowed = [s.value for s in expected]
            query += f" AND status IN ({', '.join('?' for _ in allowed)})"
            params.extend(allowed)
        cur = await asyncio.to_thread(self._execute, query, *params)
        return cur.rowcount == 1

    async def complete_workflow(
        self, workflow_id: int, expected: Iterable[WorkflowStatus] | None = None
    ) -> bool:
        now = _now()
        query = "UPDATE workflows SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?"
        params: list[Any] = [WorkflowStatus.COMPLETED.value, now, now, workflow_id]
        if expected is not None:
            allowed = [s.value for s in expected]
            query += f" AND status IN ({', '.join('?' for _ in allowed)})"
            params.extend(allowed)
        cur = await asyncio.to_thread(self._execute, query, *params)
        return cur.rowcount == 1

    async def get_job(self, job_id: int) -> Job | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM jobs WHERE id = ?", job_id
        )
        return _job_from_row(row) if row else None

    async def list_jobs(self, workflow_id: int) -> list[Job]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM jobs WHERE workflow_id = ? ORDER BY priority ASC, id ASC",
            workflow_id,
        )
        return [_job_from_row(r) for r in rows]

    async def claim_job(self, job_id: int) -> Job | None:
        cur = await asyncio.to_thread(
            self._execute,
            "UPDATE jobs SET status = ?, started_at = ? WHERE id = ? AND status = ?",
            JobStatus.RUNNING.value,
            _now(),
            job_id,
            JobStatus.PENDING.value,
        )
        if cur.rowcount != 1:
            return None
        return await self.get_job(job_id)

    async def complete_job(self, job_id: int, result: dict[str, Any] | None) -> bool:
        cur = await asyncio.to_thread(
            self._execute,
            "UPDATE jobs SET status = ?, completed_at = ?, result = ? WHERE id = ? AND status = ?",
            JobStatus.COMPLETED.value,
            _now(),
            json.dumps(result) if result is not None else None,
            job_id,
            JobStatus.RUNNING.value,
        )
        return cur.rowcount == 1

    async def fail_job(self, job_id: int, error: str) -> bool:
        cur = await asyncio.to_thread(
            self._execute,
            "UPDATE jobs SET status = ?, completed_at = ?, error = ? WHERE id = ? AND status = ?",
            JobStatus.FAILED.value,
            _now(),
            error,
            job_id,
            JobStatus.RUNNING.value,
        )
        return cur.rowcount == 1

    async def count_workflows(self, statuses: Iterable[WorkflowStatus]) -> int:
        values = [s.value for s in statuses]
        if not values:
            return 0
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT COUNT(*) AS n FROM workflows WHERE status IN ({', '.join('?' for _ in values)})",
            *values,
        )
        return int(row["n"])

    async def count_jobs(self, status: JobStatus) -> int:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT COUNT(*) AS n FROM jobs WHERE status = ?",
            status.value,
        )
        return int(row["n"])

    async def record_alert(
        self, level: str, message: str, metadata: dict | None = None
    ) -> SystemLog:
        cur = await asyncio.to_thread(
            self._execute,
            "INSERT INTO system_logs (level, message, metadata, created_at) VALUES (?, ?, ?, ?)",
            level,
            message,
            json.dumps(metadata or {}, default=str),
            _now(),
        )
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM system_logs WHERE id = ?", cur.lastrowid
        )
        return _log_from_row(row)

    async def list_alerts(self) -> list[SystemLog]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM system_logs ORDER BY id"
        )
        return [_log_from_row(r) for r in rows]

    async def ping(self) -> None:
        await asyncio.to_thread(self._fetchone, "SELECT 1")
