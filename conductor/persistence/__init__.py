"""Persistence layer for conductor workflows and jobs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ConductorConfig, load_config
from ..errors import ConfigurationMissingError
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ACTIVE_WORKFLOW_STATUSES,
    Job,
    JobStatus,
    SystemLog,
    Workflow,
    WorkflowStatus,
    WorkflowStatusReport,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_repository_instance: WorkflowRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[ConductorConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``CONDUCTOR_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CONDUCTOR_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresWorkflowRepository

        _repository_instance = PostgresWorkflowRepository(database_url)
    else:
        raise ConfigurationMissingError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ACTIVE_WORKFLOW_STATUSES",
    "Job",
    "JobStatus",
    "SystemLog",
    "Workflow",
    "WorkflowStatus",
    "WorkflowStatusReport",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
