"""Stand-in step used until a real implementation is registered."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)


class PlaceholderStep:
    """Logs the call, optionally simulates work, and reports success."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def execute(self, step_name: str, workflow_id: int) -> Dict[str, Any]:
        logger.info(f"Executing node: {step_name} for workflow {workflow_id}")
        if self.delay:
            await asyncio.sleep(self.delay)
        return {
            "node_name": step_name,
            "status": "success",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
