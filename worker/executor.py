# ============================================================================
# TASK EXECUTOR
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Per-task pipeline driver
# PURPOSE: Drive one task through the install or repair pipeline
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: DeploymentTaskExecutor
# ============================================================================
"""
Task Executor

Drives one DeploymentTask through its pipeline for a single WorkItem:

    pending -> connecting -> downloading -> installing -> configuring
            -> verifying -> completed

Repair items run the reduced pipeline connect -> configure -> verify.

Each step is persisted (status, current_step, buffered log lines) before
its work runs. Every write is a guarded compare-and-set through
TaskService.mutate: the stored task must still carry the item's generation
and the expected previous status. A failed guard means someone else
(pause, cancel, retry, repair, watchdog, delete) owns the task now and the
item is abandoned without further writes.

Between steps the executor re-reads the job. A paused job pauses the task,
a cancelled job cancels it. After the next step is entered the job is read
once more under the job lock, so a pause or cancel the controller was
applying while the boundary was crossed still stops the task before the
step does any work. Repair ignores both.

Step failures (StepFailure, timeout, unexpected exception, failed
StepResult) are recorded on the task. They are never re-raised.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from core.config import EngineDefaults
from core.contracts import (
    JobStatus,
    LogLevel,
    TargetOS,
    TaskStatus,
    PIPELINE_STEPS,
    REPAIR_STEPS,
    REPAIRED_STEP,
    REPAIR_ERROR_CODE,
)
from core.errors import StepFailure
from core.logging import log_checkpoint, log_context
from core.models import (
    ActivityAction,
    DeploymentLogEntry,
    DeploymentTask,
    ErrorDetails,
)
from handlers.registry import StepContext, StepResult
from infrastructure.locking import JobLockService
from repositories.base import JobStore
from services.activity_service import ActivityService
from services.task_service import TaskService
from worker.steps import STEP_ACTIONS_BY_STATUS, StepExecutor

logger = logging.getLogger(__name__)

DEFAULT_INSTALLATION_PATH = "/opt/agent"

_HALTING = (JobStatus.PAUSED, JobStatus.CANCELLED)


def _log_level(value: str) -> LogLevel:
    try:
        return LogLevel(str(value).lower())
    except ValueError:
        return LogLevel.INFO


class _StepOutcome:
    """Failure description of one step, or None fields on success."""

    __slots__ = ("failed", "original_error", "details", "suggested_fix")

    def __init__(
        self,
        failed: bool = False,
        original_error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggested_fix: Optional[str] = None,
    ):
        self.failed = failed
        self.original_error = original_error
        self.details = details or {}
        self.suggested_fix = suggested_fix


class DeploymentTaskExecutor:
    """
    Executes work items against the task store.

    Args:
        task_service: compare-and-set task writes
        job_store: job reads at step boundaries
        lock_service: per-job lock for the post-entry job check
        step_executor: performs the actual step work
        aggregator: JobAggregator (recompute, _recompute_locked)
        activity: audit trail
        engine: step timeout, agent version
    """

    def __init__(
        self,
        task_service: TaskService,
        job_store: JobStore,
        lock_service: JobLockService,
        step_executor: StepExecutor,
        aggregator,
        activity: ActivityService,
        engine: Optional[EngineDefaults] = None,
    ):
        self.tasks = task_service
        self.jobs = job_store
        self.locks = lock_service
        self.steps = step_executor
        self.aggregator = aggregator
        self.activity = activity
        self.engine = engine or EngineDefaults()

        self._executed = 0
        self._completed = 0
        self._failed = 0
        self._abandoned = 0

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def execute(self, item) -> None:
        """Run the pipeline for one WorkItem. Never raises StepFailure."""
        with log_context(job_id=item.job_id, task_id=item.task_id, component="executor"):
            task = await self.tasks.get(item.task_id)
            if task is None:
                logger.debug(f"Task {item.task_id} no longer exists, dropping item")
                self._abandoned += 1
                return
            if task.status != TaskStatus.PENDING or task.generation != item.generation:
                logger.debug(
                    f"Stale item for task {item.task_id} "
                    f"(status={task.status.value}, generation={task.generation}, "
                    f"item generation={item.generation})"
                )
                self._abandoned += 1
                return

            self._executed += 1
            with log_context(target_host=task.target_host):
                await self._run_pipeline(item, task)

    async def _run_pipeline(self, item, task: DeploymentTask) -> None:
        steps = REPAIR_STEPS if item.repair else PIPELINE_STEPS
        buffered: List[DeploymentLogEntry] = []
        previous = TaskStatus.PENDING

        for step in steps:
            task = await self._cross_boundary(item, previous, step, buffered)
            if task is None:
                return

            with log_context(step=step.value):
                outcome = await self._run_step(item, task, step, buffered)

            if outcome.failed:
                await self._record_failure(item, task, step, outcome, buffered)
                return

            previous = step

        await self._record_completion(item, previous, buffered)

    # =========================================================================
    # BOUNDARY
    # =========================================================================

    async def _cross_boundary(
        self,
        item,
        expected: TaskStatus,
        step: TaskStatus,
        buffered: List[DeploymentLogEntry],
    ) -> Optional[DeploymentTask]:
        """
        Halt the task or enter the next step.

        A job already paused or cancelled halts the task with the previous
        step as current_step. Otherwise the step is entered and the job is
        read again under the job lock: a pause or cancel that was being
        applied meanwhile halts the task before the step's work starts.
        Returns the stored task when the step may run, None when the
        pipeline stops.
        """
        if item.repair:
            return await self._enter_step(item, expected, step, buffered)

        job = await self.jobs.get(item.job_id)
        if job is None:
            return self._job_gone(item)
        if job.status in _HALTING:
            await self._halt(item, expected, job.status, buffered)
            return None

        task = await self._enter_step(item, expected, step, buffered)
        if task is None:
            return None

        async with self.locks.job_lock(item.job_id):
            job = await self.jobs.get(item.job_id)
            if job is None:
                return self._job_gone(item)
            if job.status in _HALTING:
                await self._halt(item, step, job.status, buffered, locked=True)
                return None
        return task

    def _job_gone(self, item) -> None:
        logger.debug(f"Job {item.job_id} deleted, abandoning task {item.task_id}")
        self._abandoned += 1
        return None

    async def _halt(
        self,
        item,
        expected: TaskStatus,
        job_status: JobStatus,
        buffered: List[DeploymentLogEntry],
        locked: bool = False,
    ) -> None:
        """Pause or cancel the task. locked: the caller holds the job lock."""
        pausing = job_status == JobStatus.PAUSED
        action = ActivityAction.TASK_PAUSED if pausing else ActivityAction.TASK_CANCELLED

        def halt(t: DeploymentTask) -> bool:
            if t.generation != item.generation or t.status != expected:
                return False
            t.deployment_logs.extend(buffered)
            if pausing:
                t.log("Paused at step boundary", LogLevel.WARNING)
                t.mark_paused()
            else:
                t.log("Cancelled at step boundary", LogLevel.WARNING)
                t.mark_cancelled()
            return True

        task = await self.tasks.mutate(item.task_id, halt)
        buffered.clear()
        if task is None:
            self._abandoned += 1
            return

        logger.info(f"Task {item.task_id} {task.status.value} at boundary ({expected.value})")
        await self.activity.task(task, action)
        if locked:
            await self.aggregator._recompute_locked(item.job_id)
        else:
            await self.aggregator.recompute(item.job_id)

    async def _enter_step(
        self,
        item,
        expected: TaskStatus,
        step: TaskStatus,
        buffered: List[DeploymentLogEntry],
    ) -> Optional[DeploymentTask]:
        """Persist the step transition before running it."""

        def enter(t: DeploymentTask) -> bool:
            if t.generation != item.generation or t.status != expected:
                return False
            t.deployment_logs.extend(buffered)
            t.mark_step(step)
            t.log(f"Starting {step.value}")
            return True

        task = await self.tasks.mutate(item.task_id, enter)
        buffered.clear()
        if task is None:
            logger.debug(f"Task {item.task_id} superseded before {step.value}")
            self._abandoned += 1
        return task

    # =========================================================================
    # STEP
    # =========================================================================

    def _context_for(
        self,
        item,
        task: DeploymentTask,
        step: TaskStatus,
        buffered: List[DeploymentLogEntry],
    ) -> StepContext:
        os_family = TargetOS.parse(task.target_os)

        def log_callback(message: str, level: str = "info") -> None:
            buffered.append(
                DeploymentLogEntry(message=message, level=_log_level(level), step=step.value)
            )

        return StepContext(
            task_id=task.task_id,
            job_id=task.job_id,
            target_host=task.target_host,
            target_ip=task.target_ip,
            target_os=task.target_os,
            action=STEP_ACTIONS_BY_STATUS[step],
            attempt=task.attempt_count,
            generation=item.generation,
            repair=item.repair,
            installation_path=os_family.installation_path if os_family else DEFAULT_INSTALLATION_PATH,
            agent_version=self.engine.agent_version,
            log_callback=log_callback,
        )

    async def _run_step(
        self,
        item,
        task: DeploymentTask,
        step: TaskStatus,
        buffered: List[DeploymentLogEntry],
    ) -> _StepOutcome:
        ctx = self._context_for(item, task, step, buffered)
        timeout = self.engine.step_timeout_seconds
        if timeout is not None and timeout <= 0:
            timeout = None

        try:
            result: StepResult = await asyncio.wait_for(self.steps.run(ctx), timeout)
        except StepFailure as e:
            return _StepOutcome(True, e.message, e.details, e.suggested_fix)
        except asyncio.TimeoutError:
            return _StepOutcome(
                True,
                f"Step {step.value} timed out after {timeout}s",
                {"timeout_seconds": timeout},
                "Check target responsiveness or raise the step timeout",
            )
        except Exception as e:
            logger.exception(f"Unexpected error in {step.value} for task {item.task_id}")
            return _StepOutcome(True, f"{type(e).__name__}: {e}")

        if result is None or not result.success:
            if result is None:
                return _StepOutcome(True, f"Step {step.value} returned no result")
            return _StepOutcome(
                True,
                result.error_message or f"Step {step.value} failed",
                result.details,
                result.suggested_fix,
            )

        buffered.append(DeploymentLogEntry(message=f"Completed {step.value}", step=step.value))
        return _StepOutcome()

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    @staticmethod
    def _split_details(details: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        return (
            dict(details.get("system_info") or {}),
            dict(details.get("network_info") or {}),
        )

    async def _record_failure(
        self,
        item,
        task: DeploymentTask,
        step: TaskStatus,
        outcome: _StepOutcome,
        buffered: List[DeploymentLogEntry],
    ) -> None:
        system_info, network_info = self._split_details(outcome.details)
        if item.repair:
            message = "Agent repair failed - manual intervention required"
            code = REPAIR_ERROR_CODE
        else:
            message = f"Failed during {step.value} phase"
            code = step.error_code

        details = ErrorDetails(
            phase=step.value,
            original_error=outcome.original_error,
            system_info=system_info,
            network_info=network_info,
            suggested_fix=outcome.suggested_fix,
        )

        def fail(t: DeploymentTask) -> bool:
            if t.generation != item.generation or t.status != step:
                return False
            t.deployment_logs.extend(buffered)
            t.log(f"{message}: {outcome.original_error}", LogLevel.ERROR)
            t.mark_failed(message, code, details)
            return True

        stored = await self.tasks.mutate(item.task_id, fail)
        buffered.clear()
        if stored is None:
            self._abandoned += 1
            return

        self._failed += 1
        logger.warning(f"Task {item.task_id} failed at {step.value}: {outcome.original_error}")
        await self.activity.task(stored, ActivityAction.TASK_FAILED, phase=step.value)
        await self.aggregator.recompute(item.job_id)

    async def _record_completion(
        self,
        item,
        expected: TaskStatus,
        buffered: List[DeploymentLogEntry],
    ) -> None:
        def complete(t: DeploymentTask) -> bool:
            if t.generation != item.generation or t.status != expected:
                return False
            os_family = TargetOS.parse(t.target_os)
            path = os_family.installation_path if os_family else DEFAULT_INSTALLATION_PATH
            if item.repair:
                agent_id = t.agent_id or str(uuid4())
                version = t.installed_version or self.engine.agent_version
                current_step = REPAIRED_STEP
            else:
                agent_id = str(uuid4())
                version = self.engine.agent_version
                current_step = "completed"
            t.deployment_logs.extend(buffered)
            t.mark_completed(agent_id, version, path, current_step=current_step)
            t.log("Agent repaired and running" if item.repair else "Agent installed and running")
            return True

        stored = await self.tasks.mutate(item.task_id, complete)
        buffered.clear()
        if stored is None:
            self._abandoned += 1
            return

        self._completed += 1
        log_checkpoint(
            "task_repaired" if item.repair else "task_completed",
            {"agent_id": stored.agent_id, "attempt": stored.attempt_count},
            logger,
        )
        await self.activity.task(
            stored,
            ActivityAction.TASK_COMPLETED,
            agent_id=stored.agent_id,
            repair=item.repair,
        )
        await self.aggregator.recompute(item.job_id)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "executed": self._executed,
            "completed": self._completed,
            "failed": self._failed,
            "abandoned": self._abandoned,
        }


__all__ = ["DeploymentTaskExecutor"]
