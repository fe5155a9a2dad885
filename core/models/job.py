# ============================================================================
# JOB MODEL
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core model - Deployment job
# PURPOSE: One deployment request spanning many targets
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: DeploymentJob, TargetSpec, JobProgress
# DEPENDENCIES: pydantic
# ============================================================================
"""
Job Model

A DeploymentJob is one deployment request. The job service creates it in
PENDING together with one DeploymentTask per expanded target.

Status and progress are derived values. The job aggregator is their only
writer once the job has started, apart from the explicit operator
transitions (start / pause / resume / cancel) made by the job controller.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import JobData, JobStatus


class TargetSpec(BaseModel):
    """Declarative target specification of a job."""

    ip_ranges: List[str] = Field(
        default_factory=list,
        description="'10.0.0.1-10.0.0.20', '10.0.0.1-20', single address or CIDR"
    )
    hostnames: List[str] = Field(default_factory=list)
    ip_segments: List[str] = Field(
        default_factory=list,
        description="CIDR segments, e.g. '10.0.1.0/28'"
    )

    @property
    def is_empty(self) -> bool:
        return not (self.ip_ranges or self.hostnames or self.ip_segments)


class JobProgress(BaseModel):
    """
    Progress snapshot of a job.

    successful + failed + pending == total at all times. pending counts
    every target that is neither completed nor failed; cancelled is an
    informational subset of pending.
    """

    total_targets: int = Field(default=0, ge=0)
    successful_deployments: int = Field(default=0, ge=0)
    failed_deployments: int = Field(default=0, ge=0)
    pending_deployments: int = Field(default=0, ge=0)
    cancelled_deployments: int = Field(default=0, ge=0)
    current_target: str = ""
    estimated_time_remaining: int = Field(default=0, ge=0, description="Seconds")

    @classmethod
    def initial(cls, total: int, seconds_per_target: int) -> "JobProgress":
        """Snapshot written at creation time."""
        return cls(
            total_targets=total,
            pending_deployments=total,
            estimated_time_remaining=total * seconds_per_target,
        )

    @computed_field
    @property
    def percent_complete(self) -> float:
        if self.total_targets == 0:
            return 100.0
        done = self.successful_deployments + self.failed_deployments
        return round(done * 100.0 / self.total_targets, 1)


class DeploymentJob(JobData):
    """
    A deployment job.

    Maps to: deploy.deployment_jobs table

    Lifecycle:
        1. Created PENDING with tasks and initial progress
        2. IN_PROGRESS via controller start
        3. PAUSED / IN_PROGRESS via controller pause / resume
        4. COMPLETED / FAILED / PARTIALLY_COMPLETED via aggregator
        5. CANCELLED via controller cancel
    """

    description: Optional[str] = Field(default=None, max_length=2000)
    targets: TargetSpec = Field(default_factory=TargetSpec)
    target_os: str = Field(..., max_length=64)
    max_retries: int = Field(default=3, ge=0)

    status: JobStatus = Field(default=JobStatus.PENDING)
    progress: JobProgress = Field(default_factory=JobProgress)
    cancel_reason: Optional[str] = Field(default=None, max_length=2000)

    owner: Optional[str] = Field(default=None, max_length=128)
    tenant_id: Optional[str] = Field(default=None, max_length=128)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Optimistic locking
    version: int = Field(
        default=1,
        ge=1,
        description="Version for optimistic locking - incremented on each update"
    )

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status.is_terminal()

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate job duration if started."""
        if not self.started_at:
            return None
        end_time = self.completed_at or datetime.now(timezone.utc)
        return (end_time - self.started_at).total_seconds()

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """
        Validate an operator-driven status transition.

        Aggregator-derived transitions (IN_PROGRESS <-> terminal outcome)
        are applied by the aggregator directly.
        """
        if self.status == new_status:
            return True

        allowed = {
            JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
            JobStatus.IN_PROGRESS: {JobStatus.PAUSED, JobStatus.CANCELLED},
            JobStatus.PAUSED: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
            JobStatus.COMPLETED: set(),
            JobStatus.FAILED: set(),
            JobStatus.PARTIALLY_COMPLETED: set(),
            JobStatus.CANCELLED: set(),
        }

        return new_status in allowed.get(self.status, set())

    def mark_started(self) -> None:
        """Mark job as started."""
        if self.status != JobStatus.PENDING:
            raise ValueError(f"Cannot start job in status {self.status.value}")
        now = datetime.now(timezone.utc)
        self.status = JobStatus.IN_PROGRESS
        self.started_at = now
        self.updated_at = now

    def mark_paused(self) -> None:
        if not self.can_transition_to(JobStatus.PAUSED):
            raise ValueError(f"Cannot transition from {self.status.value} to paused")
        self.status = JobStatus.PAUSED
        self.updated_at = datetime.now(timezone.utc)

    def mark_resumed(self) -> None:
        if self.status != JobStatus.PAUSED:
            raise ValueError(f"Cannot resume job in status {self.status.value}")
        self.status = JobStatus.IN_PROGRESS
        self.updated_at = datetime.now(timezone.utc)

    def mark_cancelled(self, reason: Optional[str] = None) -> None:
        """Mark job as cancelled."""
        if not self.can_transition_to(JobStatus.CANCELLED):
            raise ValueError(f"Cannot transition from {self.status.value} to cancelled")
        now = datetime.now(timezone.utc)
        self.status = JobStatus.CANCELLED
        self.cancel_reason = reason[:2000] if reason else None
        self.completed_at = now
        self.updated_at = now


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["DeploymentJob", "TargetSpec", "JobProgress"]
