# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================

from core.contracts import JobStatus, TaskStatus, LogLevel, TargetOS, ServiceStatus
from core.errors import (
    DeploymentError,
    ValidationError,
    NotFoundError,
    ConflictError,
    RetriesExhausted,
    QuotaExceeded,
    StepFailure,
)
from core.models import (
    DeploymentJob,
    DeploymentTask,
    TargetSpec,
    JobProgress,
    ActivityEntry,
)

__all__ = [
    # Enums
    "JobStatus",
    "TaskStatus",
    "LogLevel",
    "TargetOS",
    "ServiceStatus",
    # Errors
    "DeploymentError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "RetriesExhausted",
    "QuotaExceeded",
    "StepFailure",
    # Models
    "DeploymentJob",
    "DeploymentTask",
    "TargetSpec",
    "JobProgress",
    "ActivityEntry",
]
