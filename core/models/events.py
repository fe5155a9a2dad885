# ============================================================================
# ACTIVITY MODEL
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core model - Lifecycle audit trail
# PURPOSE: Append-only record of every job/task lifecycle transition
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: ActivityEntry, ActivityType, ActivityAction
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Activity Model

ActivityEntry records lifecycle transitions for auditing and for answering
"what happened to this job?" after the fact.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ActivityType(str, Enum):
    """Entity the activity is about."""
    DEPLOYMENT_JOB = "deployment_job"
    DEPLOYMENT_TASK = "deployment_task"


class ActivityAction(str, Enum):
    """Lifecycle transitions that are audited."""

    # Job lifecycle
    JOB_CREATED = "created"
    JOB_STARTED = "started"
    JOB_PAUSED = "paused"
    JOB_RESUMED = "resumed"
    JOB_CANCELLED = "cancelled"
    JOB_DELETED = "deleted"
    JOB_FINISHED = "finished"
    JOB_BULK_RETRY = "bulk_retry"

    # Task lifecycle
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_PAUSED = "task_paused"
    TASK_CANCELLED = "task_cancelled"
    TASK_RETRY = "task_retry"
    TASK_REPAIR = "task_repair"
    TASK_TIMED_OUT = "task_timed_out"
    TASK_BUDGET_EXTENDED = "task_budget_extended"


class ActivityEntry(BaseModel):
    """
    A single audit entry.

    Maps to: deploy.activity_log table
    """

    activity_id: Optional[int] = Field(
        default=None,
        description="Auto-increment primary key (SERIAL)"
    )
    entity_type: ActivityType
    entity_id: int
    action: ActivityAction
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["ActivityEntry", "ActivityType", "ActivityAction"]
