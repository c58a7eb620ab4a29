"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_WORKFLOW_STATUSES = (
    WorkflowStatus.PENDING,
    WorkflowStatus.QUEUED,
    WorkflowStatus.RUNNING,
)


class Workflow(BaseModel):
    """Persisted workflow row."""

    id: int
    name: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    property_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Job(BaseModel):
    """One scheduled step of a workflow."""

    id: int
    workflow_id: int
    node_name: str
    status: JobStatus = JobStatus.PENDING
    priority: int
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class SystemLog(BaseModel):
    """Alert or diagnostic record written by the health monitor."""

    id: int
    level: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class WorkflowStatusReport(BaseModel):
    """A workflow together with its jobs in execution order."""

    workflow: Workflow
    jobs: list[Job] = Field(default_factory=list)
