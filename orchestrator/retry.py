# ============================================================================
# RETRY / REPAIR MANAGER
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Operator-initiated task re-entry
# PURPOSE: Retry failed tasks, repair any task, raise retry budgets
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: RetryManager
# ============================================================================
"""
Retry / Repair Manager

Re-enters the task executor through the scheduler. Never automatic:
failures stay failed until an operator asks for a retry.

retry_task          failed task -> pending, attempt+1, scheduled after backoff
bulk_retry_failed   retry_task for every eligible failed task of a job
repair_task         any task -> reduced connect/configure/verify pipeline
extend_retry_budget raise max_retries of a task that ran out
"""

import logging
from typing import List, Optional

from core.config import EngineDefaults
from core.contracts import JobStatus, TaskStatus
from core.errors import ConflictError, NotFoundError, RetriesExhausted, ValidationError
from core.logging import log_context
from core.models import ActivityAction, DeploymentJob, DeploymentTask
from infrastructure.locking import JobLockService
from orchestrator.aggregator import JobAggregator
from orchestrator.scheduler import TaskScheduler, WorkItem
from repositories.base import JobStore
from services.activity_service import ActivityService
from services.task_service import TaskService

logger = logging.getLogger(__name__)


class RetryManager:
    """Operator-initiated retry and repair of deployment tasks."""

    def __init__(
        self,
        job_store: JobStore,
        task_service: TaskService,
        lock_service: JobLockService,
        aggregator: JobAggregator,
        scheduler: TaskScheduler,
        activity: ActivityService,
        engine: Optional[EngineDefaults] = None,
    ):
        self.jobs = job_store
        self.tasks = task_service
        self.locks = lock_service
        self.aggregator = aggregator
        self.scheduler = scheduler
        self.activity = activity
        self.engine = engine or EngineDefaults()

    # =========================================================================
    # RETRY
    # =========================================================================

    @staticmethod
    def _check_retryable(job: Optional[DeploymentJob], task: DeploymentTask) -> None:
        if job is not None and job.status == JobStatus.CANCELLED:
            raise ConflictError(f"Job {task.job_id} is cancelled", task.task_id)
        if task.status != TaskStatus.FAILED:
            raise ConflictError(
                f"Task {task.task_id} is {task.status.value}; only failed tasks can be retried",
                task.task_id,
            )
        if task.attempt_count >= task.max_retries:
            raise RetriesExhausted(task.task_id, task.attempt_count, task.max_retries)

    async def _retry_locked(self, job: Optional[DeploymentJob], task_id: int) -> DeploymentTask:
        """Retry one task. Caller holds the job lock and recomputes afterwards."""

        def retry(t: DeploymentTask) -> bool:
            self._check_retryable(job, t)
            t.prepare_retry()
            t.log(f"Retry requested (attempt {t.attempt_count} of {t.max_retries})")
            return True

        stored = await self.tasks.mutate(task_id, retry)
        if stored is None:
            raise ConflictError(f"Task {task_id} disappeared during retry", task_id)

        delay = self.engine.backoff_for(stored.attempt_count)
        self.scheduler.submit_later(
            WorkItem(stored.task_id, stored.job_id, stored.generation),
            delay,
        )
        logger.info(
            f"Task {task_id} retry {stored.attempt_count}/{stored.max_retries} "
            f"scheduled in {delay:.1f}s"
        )
        await self.activity.task(stored, ActivityAction.TASK_RETRY, backoff_seconds=delay)
        return stored

    async def retry_task(self, task_id: int) -> DeploymentTask:
        """
        Retry a failed task.

        Raises:
            NotFoundError: unknown task
            ConflictError: job cancelled or task not failed
            RetriesExhausted: attempt_count >= max_retries; nothing changes
        """
        task = await self.tasks.get_or_raise(task_id)
        with log_context(job_id=task.job_id, task_id=task_id, operation="retry"):
            async with self.locks.job_lock(task.job_id):
                job = await self.jobs.get(task.job_id)
                self._check_retryable(job, await self.tasks.get_or_raise(task_id))
                stored = await self._retry_locked(job, task_id)
                await self.aggregator._recompute_locked(task.job_id)
                return stored

    async def bulk_retry_failed(self, job_id: int) -> List[DeploymentTask]:
        """
        Retry every failed task of a job that still has budget.

        Tasks without budget are skipped. One recompute afterwards.
        """
        with log_context(job_id=job_id, operation="bulk_retry"):
            async with self.locks.job_lock(job_id):
                job = await self.jobs.get(job_id)
                if job is None:
                    raise NotFoundError("Job", job_id)
                if job.status == JobStatus.CANCELLED:
                    raise ConflictError(f"Job {job_id} is cancelled", job_id)

                retried: List[DeploymentTask] = []
                skipped = 0
                for task in await self.tasks.list_for_job(job_id):
                    if task.status != TaskStatus.FAILED:
                        continue
                    if task.attempt_count >= task.max_retries:
                        skipped += 1
                        continue
                    try:
                        retried.append(await self._retry_locked(job, task.task_id))
                    except ConflictError as e:
                        skipped += 1
                        logger.debug(f"Skipping task {task.task_id}: {e.message}")

                updated = await self.aggregator._recompute_locked(job_id) or job
                logger.info(f"Bulk retry on job {job_id}: {len(retried)} retried, {skipped} skipped")
                await self.activity.job(
                    updated, ActivityAction.JOB_BULK_RETRY, retried=len(retried), skipped=skipped
                )
                return retried

    # =========================================================================
    # REPAIR
    # =========================================================================

    async def repair_task(self, task_id: int) -> DeploymentTask:
        """
        Run the reduced connect/configure/verify pipeline on any task.

        Repair ignores job pause and cancel. It honors its own generation,
        so a later retry, repair or watchdog fail supersedes it.
        """
        task = await self.tasks.get_or_raise(task_id)
        with log_context(job_id=task.job_id, task_id=task_id, operation="repair"):
            async with self.locks.job_lock(task.job_id):

                def repair(t: DeploymentTask) -> bool:
                    t.prepare_repair()
                    t.log("Repair requested")
                    return True

                stored = await self.tasks.mutate(task_id, repair)
                if stored is None:
                    raise ConflictError(f"Task {task_id} disappeared during repair", task_id)

                self.scheduler.submit(
                    WorkItem(stored.task_id, stored.job_id, stored.generation, repair=True)
                )
                logger.info(f"Task {task_id} repair scheduled")
                await self.activity.task(stored, ActivityAction.TASK_REPAIR)
                await self.aggregator._recompute_locked(stored.job_id)
                return stored

    # =========================================================================
    # BUDGET
    # =========================================================================

    async def extend_retry_budget(self, task_id: int, max_retries: int) -> DeploymentTask:
        """
        Set a task's max_retries.

        Raises:
            ValidationError: max_retries below the attempts already made
        """
        task = await self.tasks.get_or_raise(task_id)
        if max_retries < task.attempt_count:
            raise ValidationError(
                f"max_retries {max_retries} is below attempt count {task.attempt_count}"
            )

        def extend(t: DeploymentTask) -> bool:
            if max_retries < t.attempt_count:
                raise ValidationError(
                    f"max_retries {max_retries} is below attempt count {t.attempt_count}"
                )
            previous = t.max_retries
            t.max_retries = max_retries
            t.log(f"Retry budget changed from {previous} to {max_retries}")
            return True

        async with self.locks.job_lock(task.job_id):
            stored = await self.tasks.mutate(task_id, extend)
        if stored is None:
            raise ConflictError(f"Task {task_id} disappeared", task_id)

        await self.activity.task(stored, ActivityAction.TASK_BUDGET_EXTENDED, max_retries=max_retries)
        return stored


__all__ = ["RetryManager"]
