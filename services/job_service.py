# ============================================================================
# JOB SERVICE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Job creation and read models
# PURPOSE: Create jobs (quota, pre-flight, expansion) and serve job reads
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Job Service

Manages job creation and reads:
- Create job: quota check, pre-flight validation, one-shot target
  expansion, persist job + tasks with initial progress
- Read jobs, tasks, merged deployment logs, status summaries,
  error reports and global stats

Lifecycle transitions after creation belong to the JobController.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from core.config import EngineDefaults, QuotaDefaults
from core.contracts import JobStatus, LogLevel, TaskStatus
from core.errors import NotFoundError, QuotaExceeded
from core.logging import log_checkpoint, log_context
from core.models import (
    ActivityAction,
    DeploymentJob,
    DeploymentTask,
    JobProgress,
    TargetSpec,
)
from infrastructure.usage_store import UsageStore, usage_key
from orchestrator.expander import build_tasks
from repositories.base import JobStore, TaskStore
from .activity_service import ActivityService
from .preflight import TargetValidator

logger = logging.getLogger(__name__)


class JobService:
    """Service for job creation and job-level reads."""

    def __init__(
        self,
        job_store: JobStore,
        task_store: TaskStore,
        activity: ActivityService,
        validator: Optional[TargetValidator] = None,
        usage_store: Optional[UsageStore] = None,
        quota: Optional[QuotaDefaults] = None,
        engine: Optional[EngineDefaults] = None,
    ):
        """
        Initialize job service.

        Args:
            job_store: Job persistence
            task_store: Task persistence
            activity: Audit trail
            validator: Pre-flight gate (default: no reachability probe)
            usage_store: Per tenant/user job counters; quota is skipped when None
            quota: Quota window and limit
            engine: Target limits and time estimates
        """
        self.engine = engine or EngineDefaults()
        self.jobs = job_store
        self.tasks = task_store
        self.activity = activity
        self.validator = validator or TargetValidator(self.engine.max_targets_per_job)
        self.usage = usage_store
        self.quota = quota or QuotaDefaults()

    # =========================================================================
    # CREATE
    # =========================================================================

    @property
    def _quota_active(self) -> bool:
        return self.usage is not None and self.quota.enabled

    async def _reserve_quota(self, key: str) -> None:
        """Take one job slot for key, or raise QuotaExceeded."""
        if not self._quota_active:
            return
        limit = self.quota.max_jobs_per_window
        reserved = await self.usage.try_increment(key, self.quota.window_seconds, limit)
        if reserved is None:
            raise QuotaExceeded(
                f"Job quota exceeded for {key}: {limit} jobs in the last "
                f"{self.quota.window_seconds}s (limit {limit})"
            )

    async def _release_quota(self, key: str) -> None:
        if self._quota_active:
            await self.usage.release(key)

    async def create_job(
        self,
        name: str,
        targets: TargetSpec,
        target_os: str,
        description: Optional[str] = None,
        max_retries: int = 3,
        owner: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> DeploymentJob:
        """
        Create a pending job with one task per expanded target.

        The quota slot is reserved up front and given back if validation or
        persistence fails, so rejected requests do not count.

        Raises:
            QuotaExceeded: too many jobs for this tenant/user in the window
            ValidationError: malformed target spec; nothing is persisted
        """
        key = usage_key(tenant_id, owner)
        with log_context(tenant_id=tenant_id, owner=owner, operation="create_job"):
            await self._reserve_quota(key)
            try:
                job, tasks, preflight = await self._persist(
                    name, targets, target_os, description, max_retries, owner, tenant_id
                )
            except Exception:
                await self._release_quota(key)
                raise

            with log_context(job_id=job.job_id):
                log_checkpoint("job_created", {"tasks": len(tasks)}, logger)
            await self.activity.job(job, ActivityAction.JOB_CREATED, warnings=preflight.warnings)
            return job

    async def _persist(self, name, targets, target_os, description, max_retries, owner, tenant_id):
        preflight = await self.validator.validate_or_raise(targets, target_os)
        for warning in preflight.warnings:
            logger.warning(f"Pre-flight warning for job '{name}': {warning}")

        job = await self.jobs.create(
            DeploymentJob(
                name=name,
                description=description,
                targets=targets,
                target_os=target_os,
                max_retries=max_retries,
                owner=owner,
                tenant_id=tenant_id,
            )
        )

        try:
            tasks = await self.tasks.create_many(
                build_tasks(job.job_id, targets, target_os, max_retries)
            )
            job.progress = JobProgress.initial(len(tasks), self.engine.seconds_per_target)
            await self.jobs.update(job)
        except Exception as e:
            logger.error(f"Task insert for job {job.job_id} failed, removing job: {e}")
            await self.tasks.delete_by_job(job.job_id)
            await self.jobs.delete(job.job_id)
            raise
        return job, tasks, preflight

    # =========================================================================
    # READS
    # =========================================================================

    async def get_job(self, job_id: int) -> DeploymentJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """Page of jobs, newest first."""
        page = max(page, 1)
        limit = max(limit, 1)
        jobs = await self.jobs.list(status=status, owner=owner, limit=limit, offset=(page - 1) * limit)
        total = await self.jobs.count(status=status, owner=owner)
        return {"jobs": jobs, "total": total, "page": page, "limit": limit}

    async def get_job_tasks(self, job_id: int) -> List[DeploymentTask]:
        await self.get_job(job_id)
        return await self.tasks.list_by_job(job_id)

    async def get_task(self, task_id: int) -> DeploymentTask:
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def get_job_logs(
        self,
        job_id: int,
        page: int = 1,
        limit: int = 100,
        level: Optional[LogLevel] = None,
    ) -> Dict[str, Any]:
        """
        Merge deployment logs of every task in the job.

        Entries are annotated with task id, host and ip, optionally filtered
        by level, sorted newest first and paginated (page is 1-based).
        """
        tasks = await self.get_job_tasks(job_id)
        entries: List[Dict[str, Any]] = []
        for task in tasks:
            for entry in task.deployment_logs:
                if level is not None and entry.level != level:
                    continue
                entries.append({
                    "timestamp": entry.timestamp,
                    "level": entry.level.value,
                    "message": entry.message,
                    "step": entry.step,
                    "task_id": task.task_id,
                    "target_host": task.target_host,
                    "target_ip": task.target_ip,
                })

        entries.sort(key=lambda e: (e["timestamp"], e["task_id"]), reverse=True)
        page = max(page, 1)
        limit = max(limit, 1)
        start = (page - 1) * limit
        return {
            "logs": entries[start:start + limit],
            "total": len(entries),
            "page": page,
            "limit": limit,
        }

    async def get_status_summary(self, job_id: int) -> Dict[str, Any]:
        """Task counts by status bucket."""
        job = await self.get_job(job_id)
        tasks = await self.tasks.list_by_job(job_id)
        counts = Counter(t.status for t in tasks)
        return {
            "job_id": job.job_id,
            "status": job.status.value,
            "total": len(tasks),
            "pending": counts[TaskStatus.PENDING],
            "in_progress": sum(1 for t in tasks if t.status.is_active()),
            "completed": counts[TaskStatus.COMPLETED],
            "failed": counts[TaskStatus.FAILED],
            "paused": counts[TaskStatus.PAUSED],
            "cancelled": counts[TaskStatus.CANCELLED],
            "percent_complete": job.progress.percent_complete,
        }

    async def get_error_logs(self, job_id: int) -> List[Dict[str, Any]]:
        """Failed tasks with their error fields."""
        tasks = await self.get_job_tasks(job_id)
        return [
            {
                "task_id": t.task_id,
                "target_host": t.target_host,
                "target_ip": t.target_ip,
                "error_code": t.error_code,
                "error_message": t.error_message,
                "error_details": t.error_details.model_dump() if t.error_details else None,
                "attempt_count": t.attempt_count,
                "max_retries": t.max_retries,
                "failed_at": t.completed_at,
            }
            for t in tasks
            if t.status == TaskStatus.FAILED
        ]

    async def get_stats(self) -> Dict[str, Any]:
        """Global deployment statistics."""
        jobs_by_status = await self.jobs.count_by_status()
        tasks_by_status = await self.tasks.count_by_status()

        completed = tasks_by_status.get(TaskStatus.COMPLETED.value, 0)
        failed = tasks_by_status.get(TaskStatus.FAILED.value, 0)
        finished = completed + failed

        return {
            "total_jobs": sum(jobs_by_status.values()),
            "jobs_by_status": jobs_by_status,
            "total_targets": sum(tasks_by_status.values()),
            "targets_by_status": tasks_by_status,
            "successful_deployments": completed,
            "failed_deployments": failed,
            "success_rate": round(completed * 100.0 / finished, 1) if finished else 0.0,
        }


__all__ = ["JobService"]
