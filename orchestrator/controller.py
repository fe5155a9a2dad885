# ============================================================================
# JOB CONTROLLER
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Operator lifecycle transitions
# PURPOSE: start / pause / resume / cancel / delete deployment jobs
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobController
# ============================================================================
"""
Job Controller

Every operation holds the per-job lock for its whole duration, so it is
serialized with the aggregator and with other operator calls on the same
job. In-flight tasks are never waited for: pause and cancel are honored by
the task executor at the next step boundary.
"""

import logging
from typing import Optional

from core.contracts import JobStatus, TaskStatus
from core.errors import ConflictError, NotFoundError
from core.logging import log_checkpoint, log_context
from core.models import ActivityAction, DeploymentJob, DeploymentTask
from infrastructure.locking import JobLockService
from orchestrator.aggregator import JobAggregator
from orchestrator.scheduler import TaskScheduler, WorkItem
from repositories.base import JobStore
from services.activity_service import ActivityService
from services.task_service import TaskService

logger = logging.getLogger(__name__)


class JobController:
    """Operator-driven job transitions."""

    def __init__(
        self,
        job_store: JobStore,
        task_service: TaskService,
        lock_service: JobLockService,
        aggregator: JobAggregator,
        scheduler: TaskScheduler,
        activity: ActivityService,
    ):
        self.jobs = job_store
        self.tasks = task_service
        self.locks = lock_service
        self.aggregator = aggregator
        self.scheduler = scheduler
        self.activity = activity

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load(self, job_id: int) -> DeploymentJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def _save(self, job: DeploymentJob) -> None:
        if not await self.jobs.update(job):
            raise ConflictError(f"Job {job.job_id} was modified concurrently", job.job_id)

    async def _halt_waiting_tasks(self, job_id: int, statuses, cancel: bool) -> int:
        """Pause or cancel tasks that are not executing. Returns count changed."""
        changed = 0
        for task in await self.tasks.list_for_job(job_id):
            if task.status not in statuses:
                continue

            def halt(t: DeploymentTask) -> bool:
                if t.status not in statuses:
                    return False
                if cancel:
                    t.mark_cancelled()
                    t.log("Cancelled before execution")
                else:
                    t.mark_paused()
                    t.log("Paused before execution")
                return True

            stored = await self.tasks.mutate(task.task_id, halt)
            if stored is not None:
                changed += 1
                await self.activity.task(
                    stored,
                    ActivityAction.TASK_CANCELLED if cancel else ActivityAction.TASK_PAUSED,
                )
        return changed

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def start(self, job_id: int) -> DeploymentJob:
        """Start a pending job and schedule all its pending tasks."""
        with log_context(job_id=job_id, operation="start"):
            async with self.locks.job_lock(job_id):
                job = await self._load(job_id)
                if job.status != JobStatus.PENDING:
                    raise ConflictError(
                        f"Job {job_id} cannot be started from {job.status.value}", job_id
                    )

                job.mark_started()
                await self._save(job)

                scheduled = 0
                for task in await self.tasks.list_for_job(job_id):
                    if task.status == TaskStatus.PENDING:
                        self.scheduler.submit(WorkItem(task.task_id, job_id, task.generation))
                        scheduled += 1

                log_checkpoint("job_started", {"tasks_scheduled": scheduled}, logger)
                await self.activity.job(job, ActivityAction.JOB_STARTED, tasks_scheduled=scheduled)
                return await self.aggregator._recompute_locked(job_id) or job

    async def pause(self, job_id: int) -> DeploymentJob:
        """Pause an in-progress job. Idempotent on a paused job."""
        with log_context(job_id=job_id, operation="pause"):
            async with self.locks.job_lock(job_id):
                job = await self._load(job_id)
                if job.status == JobStatus.PAUSED:
                    return job
                if job.status != JobStatus.IN_PROGRESS:
                    raise ConflictError(
                        f"Job {job_id} cannot be paused from {job.status.value}", job_id
                    )

                job.mark_paused()
                await self._save(job)
                paused = await self._halt_waiting_tasks(job_id, {TaskStatus.PENDING}, cancel=False)

                logger.info(f"Job {job_id} paused ({paused} waiting tasks paused)")
                await self.activity.job(job, ActivityAction.JOB_PAUSED, tasks_paused=paused)
                return await self.aggregator._recompute_locked(job_id) or job

    async def resume(self, job_id: int) -> DeploymentJob:
        """Resume a paused job. Idempotent on an in-progress job."""
        with log_context(job_id=job_id, operation="resume"):
            async with self.locks.job_lock(job_id):
                job = await self._load(job_id)
                if job.status == JobStatus.IN_PROGRESS:
                    return job
                if job.status != JobStatus.PAUSED:
                    raise ConflictError(
                        f"Job {job_id} cannot be resumed from {job.status.value}", job_id
                    )

                job.mark_resumed()
                await self._save(job)

                resumed = 0
                for task in await self.tasks.list_for_job(job_id):
                    if task.status == TaskStatus.PAUSED:
                        def wake(t: DeploymentTask) -> bool:
                            if t.status != TaskStatus.PAUSED:
                                return False
                            t.prepare_resume()
                            t.log("Resumed")
                            return True

                        stored = await self.tasks.mutate(task.task_id, wake)
                        if stored is None:
                            continue
                        self.scheduler.submit(WorkItem(stored.task_id, job_id, stored.generation))
                        resumed += 1
                    elif (
                        task.status == TaskStatus.PENDING
                        and not self.scheduler.is_tracked(task.task_id)
                    ):
                        self.scheduler.submit(WorkItem(task.task_id, job_id, task.generation))
                        resumed += 1

                logger.info(f"Job {job_id} resumed ({resumed} tasks rescheduled)")
                await self.activity.job(job, ActivityAction.JOB_RESUMED, tasks_resumed=resumed)
                return await self.aggregator._recompute_locked(job_id) or job

    async def cancel(self, job_id: int, reason: Optional[str] = None) -> DeploymentJob:
        """
        Cancel a job.

        Waiting and paused tasks are cancelled now, executing tasks at their
        next step boundary. Cancelling a cancelled job returns it unchanged.
        """
        with log_context(job_id=job_id, operation="cancel"):
            async with self.locks.job_lock(job_id):
                job = await self._load(job_id)
                if job.status == JobStatus.CANCELLED:
                    return job
                if job.status.is_terminal():
                    raise ConflictError(
                        f"Job {job_id} already finished as {job.status.value}", job_id
                    )

                job.mark_cancelled(reason)
                await self._save(job)
                cancelled = await self._halt_waiting_tasks(
                    job_id, {TaskStatus.PENDING, TaskStatus.PAUSED}, cancel=True
                )

                log_checkpoint("job_cancelled", {"reason": reason, "tasks_cancelled": cancelled}, logger)
                await self.activity.job(
                    job, ActivityAction.JOB_CANCELLED, reason=reason, tasks_cancelled=cancelled
                )
                return await self.aggregator._recompute_locked(job_id) or job

    async def delete(self, job_id: int) -> None:
        """Remove a job and its tasks. Rejected while the job is in progress."""
        with log_context(job_id=job_id, operation="delete"):
            async with self.locks.job_lock(job_id):
                job = await self._load(job_id)
                if job.status == JobStatus.IN_PROGRESS:
                    raise ConflictError(
                        f"Job {job_id} is in progress; pause or cancel it first", job_id
                    )

                removed = await self.tasks.store.delete_by_job(job_id)
                await self.jobs.delete(job_id)
                logger.info(f"Job {job_id} deleted with {removed} tasks")
                await self.activity.job(job, ActivityAction.JOB_DELETED, tasks_deleted=removed)

            self.locks.forget(job_id)


__all__ = ["JobController"]
