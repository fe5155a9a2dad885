# ============================================================================
# ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Engine composition and watchdog
# PURPOSE: Wire scheduler, executor, aggregator, controller and retry manager;
#          run the background watchdog on the leader instance
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: Orchestrator
# ============================================================================
"""
Orchestrator

Owns the execution side of the engine:

    TaskScheduler -> DeploymentTaskExecutor -> JobAggregator
    JobController / RetryManager -> TaskScheduler

Every instance runs a scheduler and serves operator calls. Only the
instance holding the leader lock runs the watchdog, which:
1. Force-fails tasks stuck in an active step longer than
   stuck_task_seconds that are not executing in this process
   (their worker died with the previous process)
2. Requeues pending tasks of in-progress jobs that no work item covers
   (restart recovery)

Non-leaders retry the lock every watchdog interval and promote themselves
when the leader goes away.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from core.config import EngineDefaults
from core.contracts import JobStatus, TaskStatus, PIPELINE_STEPS, REPAIR_ERROR_CODE
from core.logging import log_context
from core.models import ActivityAction, DeploymentTask, ErrorDetails
from infrastructure.locking import JobLockService
from orchestrator.aggregator import JobAggregator
from orchestrator.controller import JobController
from orchestrator.retry import RetryManager
from orchestrator.scheduler import TaskScheduler, WorkItem
from repositories.base import JobStore, TaskStore
from services.activity_service import ActivityService
from services.task_service import TaskService
from worker.executor import DeploymentTaskExecutor
from worker.steps import StepExecutor

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Deployment engine runtime.

    Usage:
        orchestrator = Orchestrator(job_store, task_store, activity, locks, steps)
        await orchestrator.start()
        await orchestrator.controller.start(job_id)
        ...
        await orchestrator.stop()
    """

    SCAN_LIMIT = 1000

    def __init__(
        self,
        job_store: JobStore,
        task_store: TaskStore,
        activity_service: ActivityService,
        lock_service: JobLockService,
        step_executor: StepExecutor,
        engine: Optional[EngineDefaults] = None,
    ):
        self.engine = engine or EngineDefaults()
        self.job_store = job_store
        self.task_store = task_store
        self.activity = activity_service
        self.locks = lock_service

        self.task_service = TaskService(task_store)
        self.aggregator = JobAggregator(
            job_store,
            task_store,
            lock_service,
            activity_service,
            seconds_per_target=self.engine.seconds_per_target,
        )
        self.executor = DeploymentTaskExecutor(
            self.task_service,
            job_store,
            lock_service,
            step_executor,
            self.aggregator,
            activity_service,
            self.engine,
        )
        self.scheduler = TaskScheduler(
            self.executor.execute,
            max_workers=self.engine.max_workers,
            max_concurrent_per_job=self.engine.max_concurrent_per_job,
        )
        self.controller = JobController(
            job_store,
            self.task_service,
            lock_service,
            self.aggregator,
            self.scheduler,
            activity_service,
        )
        self.retry = RetryManager(
            job_store,
            self.task_service,
            lock_service,
            self.aggregator,
            self.scheduler,
            activity_service,
            self.engine,
        )

        # State
        self._running = False
        self._is_leader = False
        self._stop_event = asyncio.Event()
        self._watchdog_task: Optional[asyncio.Task] = None
        self._started_at: Optional[datetime] = None

        # Metrics
        self._watchdog_cycles = 0
        self._tasks_timed_out = 0
        self._tasks_requeued = 0
        self._errors = 0
        self._last_watchdog_at: Optional[datetime] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the worker pool and, on the leader, the watchdog."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._stop_event.clear()

        await self.scheduler.start()

        self._is_leader = await self.locks.acquire_leader_lock()
        if self._is_leader:
            logger.info("Leader lock acquired, running watchdog")
            await self.requeue_orphans()
        else:
            logger.info(
                f"Leader lock held elsewhere, retrying every "
                f"{self.engine.watchdog_interval_seconds}s"
            )

        self._watchdog_task = asyncio.create_task(
            self._watchdog_loop(), name="deploy-watchdog"
        )

    async def stop(self, drain: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the watchdog and the worker pool and release the leader lock."""
        logger.info("Stopping orchestrator")
        self._running = False
        self._stop_event.set()

        if self._watchdog_task:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
            self._watchdog_task = None

        await self.scheduler.stop(drain=drain, timeout=timeout)

        was_leader = self._is_leader
        if was_leader:
            self._is_leader = False
            await self.locks.release_leader_lock()

        logger.info(
            f"Orchestrator stopped (was_leader={was_leader}, "
            f"timed_out={self._tasks_timed_out}, requeued={self._tasks_requeued}, "
            f"executor={self.executor.stats})"
        )

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until the worker pool has nothing outstanding."""
        await self.scheduler.wait_idle(timeout)

    # =========================================================================
    # WATCHDOG
    # =========================================================================

    async def _watchdog_loop(self) -> None:
        interval = self.engine.watchdog_interval_seconds
        logger.info(
            f"Starting watchdog loop (interval={interval}s, "
            f"stuck_after={self.engine.stuck_task_seconds}s)"
        )

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                if not self._is_leader:
                    self._is_leader = await self.locks.acquire_leader_lock()
                    if not self._is_leader:
                        continue
                    logger.info("Leader lock acquired, promoting to leader")

                await self.check_stuck_tasks()
                await self.requeue_orphans()
                self._watchdog_cycles += 1
                self._last_watchdog_at = datetime.now(timezone.utc)
            except Exception as e:
                self._errors += 1
                logger.error(f"Watchdog error: {e}", exc_info=True)

        logger.info("Watchdog loop stopped")

    async def check_stuck_tasks(self) -> int:
        """
        Force-fail tasks stuck in an active step.

        Returns:
            Number of tasks timed out
        """
        threshold = self.engine.stuck_task_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=threshold)
        candidates = await self.task_store.list_by_status(list(PIPELINE_STEPS), self.SCAN_LIMIT)

        timed_out = 0
        touched_jobs = set()
        for task in candidates:
            if task.updated_at > cutoff or self.scheduler.is_running(task.task_id):
                continue

            step = task.status
            elapsed = (datetime.now(timezone.utc) - task.updated_at).total_seconds()

            def force_fail(t: DeploymentTask) -> bool:
                if t.status != step or t.generation != task.generation:
                    return False
                message = f"Task stuck in {step.value} for {elapsed:.0f}s (limit {threshold:.0f}s)"
                t.log(message, step=step.value)
                if t.is_repairing:
                    summary, code = "Agent repair failed - manual intervention required", REPAIR_ERROR_CODE
                else:
                    summary, code = f"Failed during {step.value} phase", step.error_code
                t.mark_failed(
                    summary,
                    code,
                    ErrorDetails(
                        phase=step.value,
                        original_error=message,
                        suggested_fix="Retry the task; check the target if it recurs",
                    ),
                )
                t.generation += 1
                return True

            with log_context(job_id=task.job_id, task_id=task.task_id, step=step.value):
                stored = await self.task_service.mutate(task.task_id, force_fail)
                if stored is None:
                    continue
                logger.warning(
                    f"Timeout: task {task.task_id} in job {task.job_id} "
                    f"({step.value} for {elapsed:.0f}s, limit {threshold:.0f}s)"
                )
                timed_out += 1
                touched_jobs.add(task.job_id)
                await self.activity.task(stored, ActivityAction.TASK_TIMED_OUT, elapsed_seconds=elapsed)

        for job_id in touched_jobs:
            await self.aggregator.recompute(job_id)

        self._tasks_timed_out += timed_out
        if timed_out:
            logger.info(f"Timed out {timed_out} stuck tasks")
        return timed_out

    async def requeue_orphans(self) -> int:
        """
        Submit pending tasks of in-progress jobs that no work item covers.

        Returns:
            Number of tasks requeued
        """
        requeued = 0
        jobs = await self.job_store.list(status=JobStatus.IN_PROGRESS, limit=self.SCAN_LIMIT)
        for job in jobs:
            for task in await self.task_store.list_by_job(job.job_id):
                if task.status != TaskStatus.PENDING or self.scheduler.is_tracked(task.task_id):
                    continue
                self.scheduler.submit(WorkItem(task.task_id, job.job_id, task.generation))
                requeued += 1

        self._tasks_requeued += requeued
        if requeued:
            logger.info(f"Requeued {requeued} orphaned pending tasks")
        return requeued

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Check if orchestrator is running."""
        return self._running

    @property
    def is_leader(self) -> bool:
        """Check if this instance holds the leader lock."""
        return self._is_leader

    @property
    def stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        uptime_seconds = None
        if self._started_at:
            uptime_seconds = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "running": self._running,
            "is_leader": self._is_leader,
            "role": "leader" if self._is_leader else "standby",
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime_seconds,
            "watchdog_interval": self.engine.watchdog_interval_seconds,
            "stuck_task_seconds": self.engine.stuck_task_seconds,
            "watchdog_cycles": self._watchdog_cycles,
            "last_watchdog_at": self._last_watchdog_at.isoformat() if self._last_watchdog_at else None,
            "tasks_timed_out": self._tasks_timed_out,
            "tasks_requeued": self._tasks_requeued,
            "errors": self._errors,
            "scheduler": self.scheduler.stats,
            "executor": self.executor.stats,
            "aggregator": self.aggregator.stats,
        }


__all__ = ["Orchestrator"]
