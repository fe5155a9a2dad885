# ============================================================================
# TEST FIXTURES
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Shared harness
# PURPOSE: In-memory engine factory, latent stores and controllable step executors
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Shared fixtures.

Tests are synchronous and drive coroutines with asyncio.run. asyncio
primitives bind to the running loop, so the engine factory is called
inside the coroutine, never at fixture time.

With latency set, the engine runs over stores that yield to the event loop
around every read and write, so interleavings a real database would allow
show up in tests.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pytest

from core.config import EngineDefaults, QuotaDefaults
from core.errors import StepFailure
from core.models import JobProgress, TargetSpec
from handlers.registry import StepContext, StepResult
from infrastructure import InMemoryUsageStore, InProcessLockService
from orchestrator import Orchestrator
from repositories import InMemoryActivityStore, InMemoryJobStore, InMemoryTaskStore
from services import ActivityService, JobService, TargetValidator
from worker.steps import SimulatedStepExecutor, StepExecutor


# ============================================================================
# STEP EXECUTORS
# ============================================================================

class GatedStepExecutor(StepExecutor):
    """
    Step executor whose steps can be held open by the test.

    hold(host, action) makes that step wait until release(host, action).
    entered(host, action) is set once the step has started.
    fail(host, action) makes that step raise StepFailure.
    """

    def __init__(self):
        self._gates: Dict[Tuple[str, str], asyncio.Event] = {}
        self._entered: Dict[Tuple[str, str], asyncio.Event] = {}
        self._failures: Dict[Tuple[str, str], str] = {}
        self.history: List[Tuple[str, str, int]] = []

    def hold(self, host: str, action: str) -> None:
        self._gates[(host, action)] = asyncio.Event()
        self._entered[(host, action)] = asyncio.Event()

    def release(self, host: str, action: str) -> None:
        self._gates[(host, action)].set()

    async def wait_entered(self, host: str, action: str, timeout: float = 2.0) -> None:
        await asyncio.wait_for(self._entered[(host, action)].wait(), timeout)

    def fail(self, host: str, action: str, message: str = "boom") -> None:
        self._failures[(host, action)] = message

    def clear_failure(self, host: str, action: str) -> None:
        self._failures.pop((host, action), None)

    async def _step(self, ctx: StepContext) -> StepResult:
        key = (ctx.target_host, ctx.action)
        self.history.append((ctx.target_host, ctx.action, ctx.attempt))
        if key in self._entered:
            self._entered[key].set()
        if key in self._gates:
            await self._gates[key].wait()
        if key in self._failures:
            raise StepFailure(
                self._failures[key],
                details={"system_info": {"os": ctx.target_os}, "network_info": {"latency": 1.0}},
                suggested_fix="Fix it",
            )
        ctx.log(f"{ctx.action} ok")
        return StepResult.success_result()

    async def connect(self, ctx):
        return await self._step(ctx)

    async def download(self, ctx):
        return await self._step(ctx)

    async def install(self, ctx):
        return await self._step(ctx)

    async def configure(self, ctx):
        return await self._step(ctx)

    async def verify(self, ctx):
        return await self._step(ctx)


# ============================================================================
# LATENT STORES
# ============================================================================

class LatentJobStore(InMemoryJobStore):
    """
    Job store that sleeps around its operations.

    Reads take their snapshot before sleeping, so callers may act on stale
    data; writes sleep first and then compare versions. Every accepted
    write records the job's progress in progress_log.

    stall_next_get() hands the test a (reached, go) pair of events: the next
    get sets reached after taking its snapshot and returns only once go is
    set.
    """

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay
        self.progress_log: List[JobProgress] = []
        self._stall: Optional[Tuple[asyncio.Event, asyncio.Event]] = None

    def stall_next_get(self) -> Tuple[asyncio.Event, asyncio.Event]:
        self._stall = (asyncio.Event(), asyncio.Event())
        return self._stall

    async def create(self, job):
        await asyncio.sleep(self.delay)
        return await super().create(job)

    async def get(self, job_id):
        job = await super().get(job_id)
        stall, self._stall = self._stall, None
        if stall is None:
            await asyncio.sleep(self.delay)
        else:
            reached, go = stall
            reached.set()
            await go.wait()
        return job

    async def update(self, job):
        await asyncio.sleep(self.delay)
        accepted = await super().update(job)
        if accepted:
            self.progress_log.append(job.progress.model_copy())
        return accepted


class LatentTaskStore(InMemoryTaskStore):
    """Task store with the same read and write latency as LatentJobStore."""

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay

    async def create_many(self, tasks):
        await asyncio.sleep(self.delay)
        return await super().create_many(tasks)

    async def get(self, task_id):
        task = await super().get(task_id)
        await asyncio.sleep(self.delay)
        return task

    async def update(self, task):
        await asyncio.sleep(self.delay)
        return await super().update(task)

    async def list_by_job(self, job_id):
        tasks = await super().list_by_job(job_id)
        await asyncio.sleep(self.delay)
        return tasks


# ============================================================================
# ENGINE
# ============================================================================

@dataclass
class Engine:
    """Everything a test needs, wired over in-memory stores."""
    job_store: InMemoryJobStore
    task_store: InMemoryTaskStore
    activity_store: InMemoryActivityStore
    activity: ActivityService
    locks: InProcessLockService
    usage: InMemoryUsageStore
    steps: StepExecutor
    job_service: JobService
    orchestrator: Orchestrator
    defaults: EngineDefaults = field(default_factory=EngineDefaults)

    @property
    def controller(self):
        return self.orchestrator.controller

    @property
    def retry(self):
        return self.orchestrator.retry

    async def create(self, hostnames=None, ip_ranges=None, ip_segments=None, **kwargs):
        spec = TargetSpec(
            hostnames=hostnames or [],
            ip_ranges=ip_ranges or [],
            ip_segments=ip_segments or [],
        )
        kwargs.setdefault("name", "rollout")
        kwargs.setdefault("target_os", "linux")
        return await self.job_service.create_job(targets=spec, **kwargs)

    async def tasks(self, job_id: int):
        return await self.task_store.list_by_job(job_id)

    async def task_for(self, job_id: int, host: str):
        for task in await self.task_store.list_by_job(job_id):
            if task.target_host == host:
                return task
        raise AssertionError(f"no task for {host}")

    async def settle(self, timeout: float = 5.0) -> None:
        await self.orchestrator.wait_idle(timeout)


def build_engine(
    steps: Optional[StepExecutor] = None,
    quota: Optional[QuotaDefaults] = None,
    latency: Optional[float] = None,
    **engine_overrides,
) -> Engine:
    """
    Wire an engine over in-memory stores.

    latency: when set, use LatentJobStore/LatentTaskStore with this delay
    (0 still yields to the loop at every store call).
    """
    engine_overrides.setdefault("retry_backoff_base_seconds", 0.0)
    engine_overrides.setdefault("watchdog_interval_seconds", 3600.0)
    defaults = EngineDefaults(**engine_overrides)

    if latency is None:
        job_store = InMemoryJobStore()
        task_store = InMemoryTaskStore()
    else:
        job_store = LatentJobStore(latency)
        task_store = LatentTaskStore(latency)
    activity_store = InMemoryActivityStore()
    activity = ActivityService(activity_store)
    locks = InProcessLockService()
    usage = InMemoryUsageStore()
    steps = steps or SimulatedStepExecutor()

    job_service = JobService(
        job_store,
        task_store,
        activity,
        validator=TargetValidator(defaults.max_targets_per_job),
        usage_store=usage,
        quota=quota or QuotaDefaults(),
        engine=defaults,
    )
    orchestrator = Orchestrator(job_store, task_store, activity, locks, steps, defaults)
    return Engine(
        job_store=job_store,
        task_store=task_store,
        activity_store=activity_store,
        activity=activity,
        locks=locks,
        usage=usage,
        steps=steps,
        job_service=job_service,
        orchestrator=orchestrator,
        defaults=defaults,
    )


@pytest.fixture
def make_engine():
    """Factory fixture; call it inside the coroutine under test."""
    return build_engine


@pytest.fixture
def gated_steps():
    """Factory for GatedStepExecutor; call it inside the coroutine under test."""
    return GatedStepExecutor
