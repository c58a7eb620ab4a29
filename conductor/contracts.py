"""Message contracts exchanged over the work queue."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class JobDispatch(BaseModel):
    """Envelope asking a worker to run one job of a workflow.

    ``message_id`` is unique per publish; a redelivery carries the same id.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    job_id: int
    workflow_id: int
    node_name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    spec_version: str = "1.0"

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "JobDispatch":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
