# ============================================================================
# ACTIVITY SERVICE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Audit trail emission and retrieval
# PURPOSE: Record one activity entry per job/task lifecycle transition
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Activity Service

Provides methods to record activity at key lifecycle points.
Emission is fire-and-forget - failures are logged but don't propagate,
so an unavailable audit store never blocks a deployment.
"""

import logging
from typing import Any, Dict, List, Optional

from core.models import (
    ActivityAction,
    ActivityEntry,
    ActivityType,
    DeploymentJob,
    DeploymentTask,
)
from repositories.base import ActivityStore

logger = logging.getLogger(__name__)


class ActivityService:
    """Service for emitting and retrieving activity entries."""

    def __init__(self, store: ActivityStore):
        self._store = store

    # =========================================================================
    # CORE EMIT METHOD
    # =========================================================================

    async def emit(
        self,
        entity_type: ActivityType,
        entity_id: int,
        action: ActivityAction,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ActivityEntry]:
        """
        Record an entry. Fire-and-forget - logs errors but doesn't raise.

        Returns:
            Stored entry or None if emission failed
        """
        try:
            entry = ActivityEntry(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                metadata=metadata or {},
            )
            created = await self._store.append(entry)
            logger.debug(
                f"Activity recorded: {action.value} for "
                f"{entity_type.value}={entity_id}"
            )
            return created

        except Exception as e:
            logger.warning(
                f"Failed to record activity {action.value} for "
                f"{entity_type.value}={entity_id}: {e}"
            )
            return None

    # =========================================================================
    # JOB LIFECYCLE
    # =========================================================================

    async def job(
        self,
        job: DeploymentJob,
        action: ActivityAction,
        **metadata: Any,
    ) -> None:
        """Record a job transition with its status and progress counters."""
        await self.emit(
            ActivityType.DEPLOYMENT_JOB,
            job.job_id,
            action,
            {
                "name": job.name,
                "status": job.status.value,
                "owner": job.owner,
                "total_targets": job.progress.total_targets,
                **metadata,
            },
        )

    # =========================================================================
    # TASK LIFECYCLE
    # =========================================================================

    async def task(
        self,
        task: DeploymentTask,
        action: ActivityAction,
        **metadata: Any,
    ) -> None:
        """Record a task transition."""
        data = {
            "job_id": task.job_id,
            "target_host": task.target_host,
            "status": task.status.value,
            "attempt_count": task.attempt_count,
            **metadata,
        }
        if task.error_code:
            data["error_code"] = task.error_code
        await self.emit(ActivityType.DEPLOYMENT_TASK, task.task_id, action, data)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def for_job(self, job_id: int, limit: int = 100) -> List[ActivityEntry]:
        return await self._store.list_for(ActivityType.DEPLOYMENT_JOB, job_id, limit)

    async def for_task(self, task_id: int, limit: int = 100) -> List[ActivityEntry]:
        return await self._store.list_for(ActivityType.DEPLOYMENT_TASK, task_id, limit)


__all__ = ["ActivityService"]
