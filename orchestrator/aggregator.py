# ============================================================================
# JOB AGGREGATOR
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Job status and progress derivation
# PURPOSE: Recompute a job's status and progress from its tasks
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobAggregator, compute_progress, derive_status
# ============================================================================
"""
Job Aggregator

The only writer of derived job state. recompute() takes the per-job lock
and rebuilds progress and status from the full task list, so the result
never depends on the order in which task transitions arrived.

Status rules:
    job cancelled or pending        -> status unchanged, progress only
    non-terminal tasks, job paused  -> paused
    non-terminal tasks              -> in_progress (completed_at cleared)
    failed > 0 and completed > 0    -> partially_completed
    failed > 0                      -> failed
    otherwise                       -> completed
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from core.contracts import JobStatus, TaskStatus
from core.logging import log_checkpoint
from core.models import ActivityAction, DeploymentJob, DeploymentTask, JobProgress
from infrastructure.locking import JobLockService
from repositories.base import JobStore, TaskStore
from services.activity_service import ActivityService

logger = logging.getLogger(__name__)


def compute_progress(
    total_targets: int,
    tasks: Iterable[DeploymentTask],
    seconds_per_target: int = 30,
) -> JobProgress:
    """Build a progress snapshot. total_targets never changes."""
    tasks = list(tasks)
    counts = Counter(t.status for t in tasks)

    completed = counts[TaskStatus.COMPLETED]
    failed = counts[TaskStatus.FAILED]
    paused = counts[TaskStatus.PAUSED]
    active = sum(1 for t in tasks if t.status.is_active())
    waiting = counts[TaskStatus.PENDING]

    active_ids = sorted(
        (t.task_id, t.target_host) for t in tasks if t.status.is_active()
    )
    current_target = active_ids[0][1] if active_ids else ""

    return JobProgress(
        total_targets=total_targets,
        successful_deployments=completed,
        failed_deployments=failed,
        pending_deployments=max(total_targets - completed - failed, 0),
        cancelled_deployments=counts[TaskStatus.CANCELLED],
        current_target=current_target,
        estimated_time_remaining=(waiting + active + paused) * seconds_per_target,
    )


def derive_status(current: JobStatus, tasks: Iterable[DeploymentTask]) -> JobStatus:
    """Apply the status rules to the current job status and its tasks."""
    if current in (JobStatus.CANCELLED, JobStatus.PENDING):
        return current

    tasks = list(tasks)
    if any(not t.status.is_terminal() for t in tasks):
        if current == JobStatus.PAUSED:
            return JobStatus.PAUSED
        return JobStatus.IN_PROGRESS

    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    failed = sum(1 for t in tasks if t.status == TaskStatus.FAILED)
    if failed and completed:
        return JobStatus.PARTIALLY_COMPLETED
    if failed:
        return JobStatus.FAILED
    return JobStatus.COMPLETED


class JobAggregator:
    """Serialized per-job recompute of derived job state."""

    MAX_CAS_ATTEMPTS = 10

    def __init__(
        self,
        job_store: JobStore,
        task_store: TaskStore,
        lock_service: JobLockService,
        activity: ActivityService,
        seconds_per_target: int = 30,
    ):
        self.jobs = job_store
        self.tasks = task_store
        self.locks = lock_service
        self.activity = activity
        self.seconds_per_target = seconds_per_target
        self._recomputes = 0

    async def recompute(self, job_id: int) -> Optional[DeploymentJob]:
        """Take the job lock and recompute. Returns the stored job or None if deleted."""
        async with self.locks.job_lock(job_id):
            return await self._recompute_locked(job_id)

    async def _recompute_locked(self, job_id: int) -> Optional[DeploymentJob]:
        """Recompute while the caller already holds the job lock."""
        for attempt in range(1, self.MAX_CAS_ATTEMPTS + 1):
            job = await self.jobs.get(job_id)
            if job is None:
                return None
            tasks = await self.tasks.list_by_job(job_id)

            previous = job.status
            changed = self._apply(job, tasks)
            if not changed:
                return job

            if await self.jobs.update(job):
                self._recomputes += 1
                if job.status != previous:
                    logger.info(
                        f"Job {job_id} {previous.value} -> {job.status.value} "
                        f"({job.progress.successful_deployments} ok, "
                        f"{job.progress.failed_deployments} failed)"
                    )
                    if job.status.is_terminal() and job.status != JobStatus.CANCELLED:
                        log_checkpoint(
                            "job_finished",
                            {"job_id": job_id, "status": job.status.value},
                            logger,
                        )
                        await self.activity.job(job, ActivityAction.JOB_FINISHED)
                return job

            logger.debug(f"Version conflict on job {job_id}, attempt {attempt}")

        logger.error(f"Gave up recomputing job {job_id} after {self.MAX_CAS_ATTEMPTS} conflicts")
        return await self.jobs.get(job_id)

    def _apply(self, job: DeploymentJob, tasks: List[DeploymentTask]) -> bool:
        """Write derived fields onto job. Returns True when anything changed."""
        progress = compute_progress(job.progress.total_targets, tasks, self.seconds_per_target)
        status = derive_status(job.status, tasks)
        completed_at = job.completed_at

        if status == JobStatus.IN_PROGRESS:
            completed_at = None
        elif status != job.status and status.is_terminal():
            completed_at = datetime.now(timezone.utc)

        if (
            progress == job.progress
            and status == job.status
            and completed_at == job.completed_at
        ):
            return False

        job.progress = progress
        job.status = status
        job.completed_at = completed_at
        job.updated_at = datetime.now(timezone.utc)
        return True

    @property
    def stats(self):
        return {"recomputes": self._recomputes}


__all__ = ["JobAggregator", "compute_progress", "derive_status"]
