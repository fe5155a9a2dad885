# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Status enums, pipeline order and identity contracts
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobStatus, TaskStatus, LogLevel, TargetOS, ServiceStatus,
#          PIPELINE_STEPS, REPAIR_STEPS, JobData, TaskData
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for the agent deployment engine.

These define the minimal identity fields and status vocabularies that
cross boundaries:
- SQL (PostgreSQL)
- HTTP (FastAPI)
- Python (internal processing)

Boundary-specific models inherit from these contracts.
"""

from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, Field


# ============================================================================
# STATUS ENUMS
# ============================================================================

class JobStatus(str, Enum):
    """
    Deployment job lifecycle states.

    State transitions:
        PENDING -> IN_PROGRESS -> COMPLETED
                               -> FAILED
                               -> PARTIALLY_COMPLETED
                -> CANCELLED
        IN_PROGRESS <-> PAUSED
        IN_PROGRESS, PAUSED -> CANCELLED
    """
    PENDING = "pending"                          # Created, tasks expanded, not started
    IN_PROGRESS = "in_progress"                  # At least one task not terminal
    PAUSED = "paused"                            # Operator pause
    COMPLETED = "completed"                      # Every task completed
    FAILED = "failed"                            # Every task failed
    PARTIALLY_COMPLETED = "partially_completed"  # Mixed outcome
    CANCELLED = "cancelled"                      # Operator cancel

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.PARTIALLY_COMPLETED,
            JobStatus.CANCELLED,
        )


class TaskStatus(str, Enum):
    """
    Deployment task states.

    State transitions:
        PENDING -> CONNECTING -> DOWNLOADING -> INSTALLING
                -> CONFIGURING -> VERIFYING -> COMPLETED
        any active step -> FAILED
        PENDING, active -> PAUSED -> PENDING (resume)
        PENDING, PAUSED -> CANCELLED
        active -> CANCELLED (at a step boundary only)
        FAILED -> PENDING (retry)
    """
    PENDING = "pending"
    CONNECTING = "connecting"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    CONFIGURING = "configuring"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    def is_active(self) -> bool:
        """Check if a pipeline step is executing."""
        return self in PIPELINE_STEPS

    @property
    def error_code(self) -> str:
        """Error code recorded when this step fails."""
        return f"ERR_{self.value.upper()}_FAILED"


# Install pipeline, strictly in this order
PIPELINE_STEPS: Tuple[TaskStatus, ...] = (
    TaskStatus.CONNECTING,
    TaskStatus.DOWNLOADING,
    TaskStatus.INSTALLING,
    TaskStatus.CONFIGURING,
    TaskStatus.VERIFYING,
)

# Reduced re-verification pipeline used by repair
REPAIR_STEPS: Tuple[TaskStatus, ...] = (
    TaskStatus.CONNECTING,
    TaskStatus.CONFIGURING,
    TaskStatus.VERIFYING,
)

REPAIR_STEP = "repair"
REPAIRED_STEP = "repaired"
REPAIR_ERROR_CODE = "ERR_REPAIR_FAILED"


class LogLevel(str, Enum):
    """Severity of a deployment log entry."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class TargetOS(str, Enum):
    """Operating system families an agent can be deployed to."""
    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"

    @property
    def installation_path(self) -> str:
        """Default agent installation path for this OS."""
        if self == TargetOS.WINDOWS:
            return "C:\\Program Files\\Agent"
        if self == TargetOS.MACOS:
            return "/Library/Agent"
        return "/opt/agent"

    @classmethod
    def parse(cls, value: str) -> Optional["TargetOS"]:
        """Lenient lookup ("Windows Server 2022" -> WINDOWS)."""
        lowered = (value or "").strip().lower()
        for member in cls:
            if lowered.startswith(member.value):
                return member
        if lowered.startswith(("mac", "darwin", "osx")):
            return cls.MACOS
        if lowered.startswith(("win",)):
            return cls.WINDOWS
        if lowered in ("ubuntu", "debian", "centos", "rhel", "fedora", "suse"):
            return cls.LINUX
        return None


class ServiceStatus(str, Enum):
    """Agent service state on the target."""
    RUNNING = "running"
    STOPPED = "stopped"
    DISABLED = "disabled"
    NOT_INSTALLED = "not_installed"


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class JobData(BaseModel):
    """
    Essential job identity.

    job_id is None until the store assigns one.
    """
    job_id: Optional[int] = Field(default=None, description="Store-assigned, ascending")
    name: str = Field(..., min_length=1, max_length=256)

    model_config = {"frozen": False}


class TaskData(BaseModel):
    """
    Essential task identity within a job.
    """
    task_id: Optional[int] = Field(default=None, description="Store-assigned, ascending")
    job_id: int
    target_host: str = Field(..., max_length=255)

    model_config = {"frozen": False}
