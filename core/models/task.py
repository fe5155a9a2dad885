# ============================================================================
# TASK MODEL
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core model - Per-target deployment task
# PURPOSE: Track one target's deployment attempt within a job
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: DeploymentTask, ErrorDetails, DeploymentLogEntry
# DEPENDENCIES: pydantic
# ============================================================================
"""
Task Model

A DeploymentTask is one target's installation attempt. It is created once by
the target expander and mutated afterwards by the task executor, the job
controller and the retry/repair manager. Tasks are never recreated.

generation is bumped on every re-entry (retry, repair, resume) and on every
operator halt (pause, cancel). A work item carrying an older generation is a
stale continuation and must not touch the task.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import (
    LogLevel,
    ServiceStatus,
    TaskData,
    TaskStatus,
    PIPELINE_STEPS,
    REPAIR_STEP,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetails(BaseModel):
    """Structured failure diagnostics."""

    phase: str
    original_error: Optional[str] = None
    system_info: Dict[str, Any] = Field(default_factory=dict)
    network_info: Dict[str, Any] = Field(default_factory=dict)
    suggested_fix: Optional[str] = None


class DeploymentLogEntry(BaseModel):
    """One step event in a task's append-only deployment log."""

    timestamp: datetime = Field(default_factory=_utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    step: Optional[str] = None


class DeploymentTask(TaskData):
    """
    Runtime state of one target within a deployment job.

    Maps to: deploy.deployment_tasks table
    """

    target_ip: Optional[str] = Field(default=None, max_length=64)
    target_os: str = Field(..., max_length=64)

    status: TaskStatus = Field(default=TaskStatus.PENDING)
    current_step: Optional[str] = Field(default=None, max_length=64)

    # Retry tracking
    attempt_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)

    # Success details
    agent_id: Optional[str] = Field(default=None, max_length=128)
    installed_version: Optional[str] = Field(default=None, max_length=64)
    installation_path: Optional[str] = Field(default=None, max_length=512)
    service_status: Optional[ServiceStatus] = None

    # Failure details
    error_message: Optional[str] = Field(default=None, max_length=2000)
    error_code: Optional[str] = Field(default=None, max_length=64)
    error_details: Optional[ErrorDetails] = None

    deployment_logs: List[DeploymentLogEntry] = Field(default_factory=list)

    # Timestamps
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_contact_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    # Stale continuation guard
    generation: int = Field(default=0, ge=0)

    # Set while a repair pipeline owns the task; current_step moves on
    # to the step names once repair starts running
    repair_active: bool = False

    # Optimistic locking
    version: int = Field(
        default=1,
        ge=1,
        description="Version for optimistic locking - incremented on each update"
    )

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status.is_terminal()

    @computed_field
    @property
    def is_repairing(self) -> bool:
        return self.repair_active or self.current_step == REPAIR_STEP

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.attempt_count, 0)

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            PENDING -> CONNECTING, PAUSED, CANCELLED
            active step -> any later step, COMPLETED (from VERIFYING),
                           FAILED, PAUSED, CANCELLED
            PAUSED -> PENDING, CANCELLED
            FAILED -> PENDING (only while retries remain)
            COMPLETED, CANCELLED -> (none; repair is an explicit override)
        """
        if self.status == new_status:
            return True

        if self.status.is_active():
            position = PIPELINE_STEPS.index(self.status)
            later = set(PIPELINE_STEPS[position + 1:])
            halts = {TaskStatus.FAILED, TaskStatus.PAUSED, TaskStatus.CANCELLED}
            if self.status == TaskStatus.VERIFYING:
                halts.add(TaskStatus.COMPLETED)
            return new_status in later | halts

        allowed = {
            TaskStatus.PENDING: {TaskStatus.CONNECTING, TaskStatus.PAUSED, TaskStatus.CANCELLED},
            TaskStatus.PAUSED: {TaskStatus.PENDING, TaskStatus.CANCELLED},
            TaskStatus.FAILED: {TaskStatus.PENDING} if self.attempt_count < self.max_retries else set(),
            TaskStatus.COMPLETED: set(),
            TaskStatus.CANCELLED: set(),
        }

        return new_status in allowed.get(self.status, set())

    def _require(self, new_status: TaskStatus) -> None:
        if not self.can_transition_to(new_status):
            raise ValueError(
                f"Cannot transition task {self.task_id} from "
                f"{self.status.value} to {new_status.value}"
            )

    def log(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        step: Optional[str] = None,
    ) -> None:
        """Append a deployment log entry."""
        self.deployment_logs.append(
            DeploymentLogEntry(level=level, message=message, step=step or self.current_step)
        )

    def mark_step(self, step: TaskStatus) -> None:
        """Enter a pipeline step."""
        self._require(step)
        now = _utcnow()
        self.status = step
        self.current_step = step.value
        if self.started_at is None:
            self.started_at = now
        self.updated_at = now

    def mark_completed(
        self,
        agent_id: str,
        installed_version: str,
        installation_path: str,
        current_step: str = "completed",
    ) -> None:
        """Mark task as deployed and healthy."""
        self._require(TaskStatus.COMPLETED)
        now = _utcnow()
        self.status = TaskStatus.COMPLETED
        self.current_step = current_step
        self.repair_active = False
        self.agent_id = agent_id
        self.installed_version = installed_version
        self.installation_path = installation_path
        self.service_status = ServiceStatus.RUNNING
        self.completed_at = now
        self.last_contact_at = now
        self.updated_at = now

    def mark_failed(
        self,
        error_message: str,
        error_code: str,
        error_details: Optional[ErrorDetails] = None,
    ) -> None:
        """Mark task as failed."""
        self._require(TaskStatus.FAILED)
        now = _utcnow()
        self.status = TaskStatus.FAILED
        self.repair_active = False
        self.error_message = error_message[:2000]
        self.error_code = error_code
        self.error_details = error_details
        self.completed_at = now
        self.updated_at = now

    def mark_paused(self) -> None:
        self._require(TaskStatus.PAUSED)
        self.status = TaskStatus.PAUSED
        self.repair_active = False
        self.generation += 1
        self.updated_at = _utcnow()

    def mark_cancelled(self) -> None:
        self._require(TaskStatus.CANCELLED)
        now = _utcnow()
        self.status = TaskStatus.CANCELLED
        self.repair_active = False
        self.generation += 1
        self.completed_at = now
        self.updated_at = now

    def prepare_resume(self) -> None:
        """Return a paused task to PENDING for rescheduling."""
        self._require(TaskStatus.PENDING)
        self.status = TaskStatus.PENDING
        self.generation += 1
        self.updated_at = _utcnow()

    def _clear_errors(self) -> None:
        self.error_message = None
        self.error_code = None
        self.error_details = None

    def prepare_retry(self) -> bool:
        """
        Prepare task for retry after failure.

        Returns True if retry is allowed, False if not failed or
        retries are exhausted.
        """
        if self.status != TaskStatus.FAILED:
            return False
        if self.attempt_count >= self.max_retries:
            return False

        self.attempt_count += 1
        self.status = TaskStatus.PENDING
        self.generation += 1
        self.completed_at = None
        self._clear_errors()
        self.updated_at = _utcnow()
        return True

    def prepare_repair(self) -> None:
        """
        Reset any task for the repair pipeline.

        Bypasses the transition table: repair is an explicit override.
        """
        self.status = TaskStatus.PENDING
        self.current_step = REPAIR_STEP
        self.repair_active = True
        self.generation += 1
        self.completed_at = None
        self._clear_errors()
        self.updated_at = _utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["DeploymentTask", "ErrorDetails", "DeploymentLogEntry"]
