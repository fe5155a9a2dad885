# ============================================================================
# TASK EXECUTOR TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Per-task pipeline
# PURPOSE: Verify step ordering, failure recording, timeouts and stale items
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Task Executor Tests

The executor is driven directly with WorkItems against in-memory stores;
the job stays pending, so boundary checks never halt these pipelines.

Run with:
    pytest tests/test_executor.py -v
"""

import asyncio
import pytest

from core.contracts import JobStatus, LogLevel, ServiceStatus, TaskStatus
from core.models import ActivityAction, ActivityType
from handlers.registry import StepResult
from orchestrator.scheduler import WorkItem
from worker.steps import SimulatedStepExecutor


def _item(task, **kwargs):
    return WorkItem(task.task_id, task.job_id, task.generation, **kwargs)


class _Raising(SimulatedStepExecutor):
    async def install(self, ctx):
        raise RuntimeError("disk full")


class _Refusing(SimulatedStepExecutor):
    async def configure(self, ctx):
        return StepResult.failure_result(
            "config rejected",
            details={"system_info": {"kernel": "6.1"}},
            suggested_fix="Check agent.conf",
        )


class TestPipeline:

    def test_happy_path(self, make_engine):
        async def scenario():
            eng = make_engine(agent_version="9.9.9")
            job = await eng.create(hostnames=["web-01"], target_os="windows")
            task = (await eng.tasks(job.job_id))[0]

            await eng.orchestrator.executor.execute(_item(task))
            return await eng.task_store.get(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.COMPLETED
        assert task.current_step == "completed"
        assert task.installed_version == "9.9.9"
        assert task.installation_path == "C:\\Program Files\\Agent"
        assert task.service_status == ServiceStatus.RUNNING
        assert task.agent_id
        assert task.completed_at is not None

        started = [e.step for e in task.deployment_logs if e.message.startswith("Starting ")]
        assert started == ["connecting", "downloading", "installing", "configuring", "verifying"]
        assert any("succeeded on web-01" in e.message for e in task.deployment_logs)

    def test_steps_run_in_order(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            eng = make_engine(steps=steps)
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            return steps.history

        history = asyncio.run(scenario())
        assert [action for _, action, _ in history] == [
            "connect", "download", "install", "configure", "verify",
        ]

    def test_step_failure_recorded(self, make_engine):
        async def scenario():
            eng = make_engine(steps=SimulatedStepExecutor(fail_at={"web-01": "install"}))
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            activity = await eng.activity_store.list_for(ActivityType.DEPLOYMENT_TASK, task.task_id)
            return await eng.task_store.get(task.task_id), activity

        task, activity = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert task.error_code == "ERR_INSTALLING_FAILED"
        assert task.error_message == "Failed during installing phase"
        assert task.error_details.phase == "installing"
        assert task.error_details.original_error == "Network timeout during install"
        assert task.error_details.system_info["architecture"] == "x64"
        assert task.error_details.suggested_fix == "Check network connectivity and retry"
        assert task.deployment_logs[-1].level == LogLevel.ERROR
        assert task.attempt_count == 0
        assert [a.action for a in activity] == [ActivityAction.TASK_FAILED]

    def test_unexpected_exception_is_step_failure(self, make_engine):
        async def scenario():
            eng = make_engine(steps=_Raising())
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            return await eng.task_store.get(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert task.error_details.original_error == "RuntimeError: disk full"

    def test_failed_result_is_step_failure(self, make_engine):
        async def scenario():
            eng = make_engine(steps=_Refusing())
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            return await eng.task_store.get(task.task_id)

        task = asyncio.run(scenario())
        assert task.error_code == "ERR_CONFIGURING_FAILED"
        assert task.error_details.original_error == "config rejected"
        assert task.error_details.system_info == {"kernel": "6.1"}
        assert task.error_details.suggested_fix == "Check agent.conf"

    def test_step_timeout(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            steps.hold("web-01", "download")
            eng = make_engine(steps=steps, step_timeout_seconds=0.05)
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            return await eng.task_store.get(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert task.error_code == "ERR_DOWNLOADING_FAILED"
        assert "timed out after 0.05s" in task.error_details.original_error


class TestGuards:

    def test_stale_generation_is_noop(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            eng = make_engine(steps=steps)
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(
                WorkItem(task.task_id, task.job_id, task.generation + 1)
            )
            return await eng.task_store.get(task.task_id), steps.history

        task, history = asyncio.run(scenario())
        assert task.status == TaskStatus.PENDING
        assert task.version == 1
        assert history == []

    def test_non_pending_task_is_noop(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            done = await eng.task_store.get(task.task_id)
            await eng.orchestrator.executor.execute(_item(done))
            return done, await eng.task_store.get(task.task_id)

        before, after = asyncio.run(scenario())
        assert before.version == after.version

    def test_deleted_job_abandons_task(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.job_store.delete(job.job_id)
            await eng.orchestrator.executor.execute(_item(task))
            return await eng.task_store.get(task.task_id), eng.orchestrator.executor.stats

        task, stats = asyncio.run(scenario())
        assert task.status == TaskStatus.PENDING
        assert stats["abandoned"] == 1

    def test_job_not_started_stays_pending(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["web-01"])
            task = (await eng.tasks(job.job_id))[0]
            await eng.orchestrator.executor.execute(_item(task))
            return await eng.job_store.get(job.job_id)

        job = asyncio.run(scenario())
        assert job.status == JobStatus.PENDING
        assert job.progress.successful_deployments == 1
