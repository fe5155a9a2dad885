# ============================================================================
# TASK SCHEDULER
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Bounded worker pool
# PURPOSE: Queue work items and run them with a global and per-job limit
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: WorkItem, TaskScheduler
# ============================================================================
"""
Task Scheduler

One asyncio.Queue feeds max_workers worker coroutines. A worker that pulls
an item whose job already has max_concurrent_per_job items running parks
it in that job's deferred deque and moves on, so a large job never
starves the pool. When a running item of the job finishes, one deferred
item of that job goes back on the queue.

An item is "outstanding" from submit until its handler returns, whether
it is queued, deferred, waiting on a backoff timer or running.
wait_idle() returns once nothing is outstanding.

The handler must not raise; exceptions are logged and counted.

stop() raises a stopping flag that workers check between items, then
cancels them and waits a bounded grace period per round. A handler that
swallows the cancellation (asyncio.wait_for does on some interpreters when
the inner awaitable finishes at the same moment) still lets its worker
exit after the item instead of parking on the queue.
"""

import asyncio
import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    """
    One request to run a task's pipeline.

    generation is the task generation the item was issued for; the
    executor ignores the item if the task has moved on.
    """
    task_id: int
    job_id: int
    generation: int
    repair: bool = False


WorkHandler = Callable[[WorkItem], Awaitable[None]]


class TaskScheduler:
    """Bounded worker pool with per-job concurrency cap and delayed submits."""

    STOP_GRACE_SECONDS = 5.0
    STOP_ROUNDS = 3

    def __init__(
        self,
        handler: WorkHandler,
        max_workers: int = 16,
        max_concurrent_per_job: int = 8,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if max_concurrent_per_job < 1:
            raise ValueError("max_concurrent_per_job must be at least 1")

        self._handler = handler
        self.max_workers = max_workers
        self.max_concurrent_per_job = max_concurrent_per_job

        self._queue: "asyncio.Queue[WorkItem]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._timers: Set[asyncio.TimerHandle] = set()

        self._deferred: Dict[int, Deque[WorkItem]] = defaultdict(deque)
        self._running_per_job: Counter = Counter()
        self._running_tasks: Counter = Counter()
        self._outstanding_tasks: Counter = Counter()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._started = False
        self._stopping = False

        # Metrics
        self._submitted = 0
        self._processed = 0
        self._handler_errors = 0
        self._peak_running_per_job: Counter = Counter()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self._started:
            logger.warning("Scheduler already started")
            return
        self._started = True
        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"deploy-worker-{n}")
            for n in range(self.max_workers)
        ]
        logger.info(
            f"Scheduler started (workers={self.max_workers}, "
            f"per_job={self.max_concurrent_per_job})"
        )

    async def stop(self, drain: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop workers.

        Args:
            drain: wait for outstanding work first
            timeout: bound on the drain wait
        """
        if drain:
            try:
                await self.wait_idle(timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Scheduler drain timed out with {self._outstanding} outstanding")

        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

        self._stopping = True
        await self._cancel_workers()
        self._workers = []
        self._started = False

        dropped = self._outstanding
        self._queue = asyncio.Queue()
        self._deferred.clear()
        self._running_per_job.clear()
        self._running_tasks.clear()
        self._outstanding_tasks.clear()
        self._outstanding = 0
        self._idle.set()

        logger.info(f"Scheduler stopped (dropped={dropped}, processed={self._processed})")

    async def _cancel_workers(self) -> None:
        pending = set(self._workers)
        for _ in range(self.STOP_ROUNDS):
            if not pending:
                return
            for worker in pending:
                worker.cancel()
            _, pending = await asyncio.wait(pending, timeout=self.STOP_GRACE_SECONDS)
            if pending:
                logger.warning(f"{len(pending)} workers still running after cancel, retrying")
        if pending:
            logger.error(f"Abandoning {len(pending)} workers that ignored cancellation")

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, item: WorkItem) -> None:
        """Queue an item for immediate execution."""
        self._track(item)
        self._queue.put_nowait(item)

    def submit_later(self, item: WorkItem, delay: float) -> None:
        """Queue an item after delay seconds (retry backoff)."""
        if delay <= 0:
            self.submit(item)
            return

        self._track(item)
        loop = asyncio.get_running_loop()
        timer: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(timer)
            self._queue.put_nowait(item)

        timer = loop.call_later(delay, fire)
        self._timers.add(timer)
        logger.debug(f"Task {item.task_id} scheduled in {delay:.1f}s")

    def _track(self, item: WorkItem) -> None:
        self._submitted += 1
        self._outstanding += 1
        self._outstanding_tasks[item.task_id] += 1
        self._idle.clear()

    def _untrack(self, item: WorkItem) -> None:
        self._outstanding -= 1
        self._outstanding_tasks[item.task_id] -= 1
        if self._outstanding_tasks[item.task_id] <= 0:
            del self._outstanding_tasks[item.task_id]
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()

    # =========================================================================
    # WORKERS
    # =========================================================================

    async def _worker(self, number: int) -> None:
        while not self._stopping:
            queue = self._queue
            item = await queue.get()
            try:
                if self._running_per_job[item.job_id] >= self.max_concurrent_per_job:
                    self._deferred[item.job_id].append(item)
                    continue
                await self._run(item)
            finally:
                queue.task_done()

    async def _run(self, item: WorkItem) -> None:
        self._running_per_job[item.job_id] += 1
        self._running_tasks[item.task_id] += 1
        self._peak_running_per_job[item.job_id] = max(
            self._peak_running_per_job[item.job_id],
            self._running_per_job[item.job_id],
        )
        try:
            await self._handler(item)
        except Exception as e:
            self._handler_errors += 1
            logger.exception(f"Work item for task {item.task_id} raised: {e}")
        finally:
            self._processed += 1
            self._running_per_job[item.job_id] -= 1
            if self._running_per_job[item.job_id] <= 0:
                del self._running_per_job[item.job_id]
            self._running_tasks[item.task_id] -= 1
            if self._running_tasks[item.task_id] <= 0:
                del self._running_tasks[item.task_id]
            self._release_deferred(item.job_id)
            self._untrack(item)

    def _release_deferred(self, job_id: int) -> None:
        waiting = self._deferred.get(job_id)
        if not waiting:
            return
        self._queue.put_nowait(waiting.popleft())
        if not waiting:
            del self._deferred[job_id]

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """
        Wait until nothing is outstanding.

        Raises:
            asyncio.TimeoutError when timeout elapses first
        """
        await asyncio.wait_for(self._idle.wait(), timeout)

    def is_tracked(self, task_id: int) -> bool:
        """True if any item for this task is outstanding."""
        return self._outstanding_tasks.get(task_id, 0) > 0

    def is_running(self, task_id: int) -> bool:
        return self._running_tasks.get(task_id, 0) > 0

    def running_for_job(self, job_id: int) -> int:
        return self._running_per_job.get(job_id, 0)

    def peak_running_for_job(self, job_id: int) -> int:
        return self._peak_running_per_job.get(job_id, 0)

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "started": self._started,
            "workers": self.max_workers,
            "max_concurrent_per_job": self.max_concurrent_per_job,
            "outstanding": self._outstanding,
            "queued": self._queue.qsize(),
            "deferred": sum(len(d) for d in self._deferred.values()),
            "delayed": len(self._timers),
            "running": sum(self._running_per_job.values()),
            "submitted": self._submitted,
            "processed": self._processed,
            "handler_errors": self._handler_errors,
        }


__all__ = ["WorkItem", "WorkHandler", "TaskScheduler"]
