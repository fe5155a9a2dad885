# ============================================================================
# STEP EXECUTORS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Pipeline step capability
# PURPOSE: Perform connect / download / install / configure / verify
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: StepExecutor, SimulatedStepExecutor, RegisteredStepExecutor,
#          STEP_ACTIONS_BY_STATUS
# ============================================================================
"""
Step Executors

The task executor owns ordering, persistence, timeouts and pause/cancel
handling. A StepExecutor only performs the work of one step on one target
and reports the outcome.

Failure is signalled by returning StepResult.failure_result(...) or by
raising StepFailure. Any other exception is also recorded as a step
failure by the task executor.

Implementations:
- SimulatedStepExecutor: deterministic outcomes seeded per
  (seed, task, attempt, step), for development and tests
- RegisteredStepExecutor: dispatches to handlers registered in
  handlers.registry by step and OS family
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Optional

from core.contracts import TaskStatus, TargetOS
from core.errors import StepFailure
from handlers.registry import (
    HandlerNotFoundError,
    StepContext,
    StepResult,
    execute_step_handler,
)

logger = logging.getLogger(__name__)

STEP_ACTIONS_BY_STATUS: Dict[TaskStatus, str] = {
    TaskStatus.CONNECTING: "connect",
    TaskStatus.DOWNLOADING: "download",
    TaskStatus.INSTALLING: "install",
    TaskStatus.CONFIGURING: "configure",
    TaskStatus.VERIFYING: "verify",
}


def _action_name(step: str) -> str:
    """Accept either an action ("install") or a status ("installing")."""
    try:
        return STEP_ACTIONS_BY_STATUS[TaskStatus(step)]
    except (ValueError, KeyError):
        return step


class StepExecutor(ABC):
    """Capability that performs each pipeline step on a target."""

    @abstractmethod
    async def connect(self, ctx: StepContext) -> StepResult:
        ...

    @abstractmethod
    async def download(self, ctx: StepContext) -> StepResult:
        ...

    @abstractmethod
    async def install(self, ctx: StepContext) -> StepResult:
        ...

    @abstractmethod
    async def configure(self, ctx: StepContext) -> StepResult:
        ...

    @abstractmethod
    async def verify(self, ctx: StepContext) -> StepResult:
        ...

    async def run(self, ctx: StepContext) -> StepResult:
        """Dispatch ctx.action to the matching method."""
        method = getattr(self, ctx.action, None)
        if method is None:
            raise StepFailure(f"Unknown step action: {ctx.action}")
        return await method(ctx)


# ============================================================================
# SIMULATED
# ============================================================================

class SimulatedStepExecutor(StepExecutor):
    """
    Deterministic stand-in for real remote installation.

    Each (seed, task_id, attempt, action) tuple seeds its own RNG, so the
    same task and attempt always produce the same outcome regardless of
    scheduling order.

    Args:
        failure_rate: probability in [0, 1] that any given step fails
        fail_at: target_host -> action (or status name) that always fails
        step_delay: seconds each step sleeps
        seed: global seed
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        fail_at: Optional[Dict[str, str]] = None,
        step_delay: float = 0.0,
        seed: int = 0,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be within [0, 1], got {failure_rate}")
        self.failure_rate = failure_rate
        self.fail_at: Dict[str, str] = {
            host: _action_name(step) for host, step in (fail_at or {}).items()
        }
        self.step_delay = step_delay
        self.seed = seed
        self.calls = 0

    def _rng(self, ctx: StepContext) -> random.Random:
        return random.Random(f"{self.seed}:{ctx.task_id}:{ctx.attempt}:{ctx.action}")

    def fail_host_at(self, host: str, step: str) -> None:
        self.fail_at[host] = _action_name(step)

    def clear_failures(self) -> None:
        self.fail_at.clear()

    async def _simulate(self, ctx: StepContext) -> StepResult:
        self.calls += 1
        if self.step_delay > 0:
            await asyncio.sleep(self.step_delay)

        rng = self._rng(ctx)
        forced = self.fail_at.get(ctx.target_host) == ctx.action
        if forced or rng.random() < self.failure_rate:
            os_family = TargetOS.parse(ctx.target_os)
            raise StepFailure(
                f"Network timeout during {ctx.action}",
                details={
                    "system_info": {
                        "os": os_family.value if os_family else ctx.target_os,
                        "architecture": "x64",
                    },
                    "network_info": {"latency": round(50 + rng.random() * 100, 1)},
                },
                suggested_fix="Check network connectivity and retry",
            )

        ctx.log(f"{ctx.action} succeeded on {ctx.address}")
        return StepResult.success_result(output={"simulated": True})

    async def connect(self, ctx: StepContext) -> StepResult:
        return await self._simulate(ctx)

    async def download(self, ctx: StepContext) -> StepResult:
        return await self._simulate(ctx)

    async def install(self, ctx: StepContext) -> StepResult:
        return await self._simulate(ctx)

    async def configure(self, ctx: StepContext) -> StepResult:
        return await self._simulate(ctx)

    async def verify(self, ctx: StepContext) -> StepResult:
        return await self._simulate(ctx)


# ============================================================================
# REGISTERED
# ============================================================================

class RegisteredStepExecutor(StepExecutor):
    """Dispatches each step to the handler registered for its OS family."""

    async def _dispatch(self, ctx: StepContext) -> StepResult:
        os_family = TargetOS.parse(ctx.target_os)
        try:
            return await execute_step_handler(
                replace(ctx, target_os=os_family.value if os_family else ctx.target_os)
            )
        except HandlerNotFoundError as e:
            raise StepFailure(
                str(e),
                suggested_fix=f"Register a {e.action} handler for {e.os_family or 'any OS'}",
            ) from e

    async def connect(self, ctx: StepContext) -> StepResult:
        return await self._dispatch(ctx)

    async def download(self, ctx: StepContext) -> StepResult:
        return await self._dispatch(ctx)

    async def install(self, ctx: StepContext) -> StepResult:
        return await self._dispatch(ctx)

    async def configure(self, ctx: StepContext) -> StepResult:
        return await self._dispatch(ctx)

    async def verify(self, ctx: StepContext) -> StepResult:
        return await self._dispatch(ctx)


__all__ = [
    "StepExecutor",
    "SimulatedStepExecutor",
    "RegisteredStepExecutor",
    "STEP_ACTIONS_BY_STATUS",
]
