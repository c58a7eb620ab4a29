"""conductor: sequential multi-step workflow orchestration over a work queue."""

from .contracts import JobDispatch
from .errors import (
    ConductorError,
    ConfigurationMissingError,
    JobNotFoundError,
    NotFoundError,
    PersistenceError,
    StepExecutionError,
    WorkflowAlreadyQueuedError,
    WorkflowNotFoundError,
)
from .monitor import SystemHealthMonitor
from .nodes import StepRegistry, default_registry
from .orchestrator import WorkflowOrchestrator
from .persistence import get_repository
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ConductorError",
    "ConfigurationMissingError",
    "JobDispatch",
    "JobNotFoundError",
    "NotFoundError",
    "PersistenceError",
    "StepExecutionError",
    "StepRegistry",
    "SystemHealthMonitor",
    "WorkflowAlreadyQueuedError",
    "WorkflowNotFoundError",
    "WorkflowOrchestrator",
    "default_registry",
    "get_repository",
    "get_transport",
]
