# ============================================================================
# STEP EXECUTOR TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Step capability and handler registry
# PURPOSE: Verify simulated determinism and registry dispatch by OS family
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Step Executor Tests

Run with:
    pytest tests/test_steps.py -v
"""

import asyncio
import pytest
from unittest.mock import patch

import handlers.registry as registry
from core.errors import StepFailure
from handlers.registry import (
    DuplicateHandlerError,
    HandlerNotFoundError,
    StepContext,
    StepResult,
    execute_step_handler,
    missing_step_handlers,
    register_step_handler,
)
from worker.steps import RegisteredStepExecutor, SimulatedStepExecutor


def _ctx(action="connect", host="web-01", target_os="linux", task_id=1, attempt=0, **kwargs):
    return StepContext(
        task_id=task_id,
        job_id=1,
        target_host=host,
        target_ip=kwargs.pop("target_ip", None),
        target_os=target_os,
        action=action,
        attempt=attempt,
        generation=0,
        **kwargs,
    )


@pytest.fixture
def isolated_registry():
    """Run a test against an empty handler registry, then restore it."""
    with patch.dict(registry._handlers, clear=True), patch.dict(registry._handler_metadata, clear=True):
        yield


# ============================================================================
# SIMULATED
# ============================================================================

class TestSimulatedStepExecutor:

    def test_success_by_default(self):
        steps = SimulatedStepExecutor()
        lines = []
        result = asyncio.run(steps.run(_ctx(log_callback=lambda m, level: lines.append(m))))
        assert result.success
        assert lines == ["connect succeeded on web-01"]

    def test_accepts_status_names(self):
        steps = SimulatedStepExecutor(fail_at={"web-01": "installing"})
        with pytest.raises(StepFailure):
            asyncio.run(steps.run(_ctx(action="install")))
        assert steps.fail_at == {"web-01": "install"}
        assert asyncio.run(steps.run(_ctx(action="install", host="web-02"))).success

    def test_forced_failure_details(self):
        steps = SimulatedStepExecutor()
        steps.fail_host_at("web-01", "download")
        with pytest.raises(StepFailure) as exc_info:
            asyncio.run(steps.run(_ctx(action="download", target_os="Windows Server")))
        failure = exc_info.value
        assert failure.message == "Network timeout during download"
        assert failure.details["system_info"] == {"os": "windows", "architecture": "x64"}
        assert "latency" in failure.details["network_info"]
        assert failure.suggested_fix == "Check network connectivity and retry"

        steps.clear_failures()
        assert asyncio.run(steps.run(_ctx(action="download"))).success

    def test_outcomes_are_seeded(self):
        def outcomes(seed):
            steps = SimulatedStepExecutor(failure_rate=0.5, seed=seed)
            results = []
            for task_id in range(40):
                try:
                    asyncio.run(steps.run(_ctx(task_id=task_id)))
                    results.append(True)
                except StepFailure:
                    results.append(False)
            return results

        first = outcomes(7)
        assert first == outcomes(7)
        assert True in first and False in first

    def test_always_fails_at_rate_one(self):
        steps = SimulatedStepExecutor(failure_rate=1.0)
        with pytest.raises(StepFailure):
            asyncio.run(steps.run(_ctx()))
        assert steps.calls == 1

    def test_rejects_bad_rate(self):
        with pytest.raises(ValueError):
            SimulatedStepExecutor(failure_rate=1.5)


# ============================================================================
# REGISTRY
# ============================================================================

class TestHandlerRegistry:

    def test_os_specific_wins_over_generic(self, isolated_registry):
        @register_step_handler("install")
        def install_any(ctx):
            return StepResult.success_result({"package": "generic"})

        @register_step_handler("install", os_family="windows")
        async def install_msi(ctx):
            return StepResult.success_result({"package": "agent.msi"})

        windows = asyncio.run(execute_step_handler(_ctx(action="install", target_os="windows")))
        linux = asyncio.run(execute_step_handler(_ctx(action="install", target_os="linux")))
        assert windows.output == {"package": "agent.msi"}
        assert linux.output == {"package": "generic"}

    def test_duplicate_registration(self, isolated_registry):
        @register_step_handler("verify")
        def verify(ctx):
            return StepResult.success_result()

        with pytest.raises(DuplicateHandlerError):
            register_step_handler("verify")(verify)

    def test_unknown_action(self, isolated_registry):
        with pytest.raises(ValueError):
            register_step_handler("reboot")

    def test_missing_handlers(self, isolated_registry):
        @register_step_handler("connect")
        def connect(ctx):
            return StepResult.success_result()

        assert missing_step_handlers("linux") == ["download", "install", "configure", "verify"]
        with pytest.raises(HandlerNotFoundError):
            asyncio.run(execute_step_handler(_ctx(action="download")))

    def test_network_connect_handler_registered(self):
        assert registry.get_step_handler("connect", "linux") is not None


# ============================================================================
# REGISTERED EXECUTOR
# ============================================================================

class TestRegisteredStepExecutor:

    def test_normalizes_os_family(self, isolated_registry):
        seen = []

        @register_step_handler("configure", os_family="linux")
        def configure(ctx):
            seen.append(ctx.target_os)
            return StepResult.success_result()

        result = asyncio.run(RegisteredStepExecutor().run(_ctx(action="configure", target_os="Ubuntu")))
        assert result.success
        assert seen == ["linux"]

    def test_missing_handler_is_step_failure(self, isolated_registry):
        with pytest.raises(StepFailure) as exc_info:
            asyncio.run(RegisteredStepExecutor().run(_ctx(action="install")))
        assert "install" in exc_info.value.suggested_fix
