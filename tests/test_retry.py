# ============================================================================
# RETRY / REPAIR TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Operator-initiated re-entry
# PURPOSE: Verify retry budgets, backoff, bulk retry, repair and budget changes
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Retry / Repair Tests

Covers:
1. Retry of a failed task re-runs the full pipeline
2. Exhausted budget is rejected and leaves the task untouched
3. Backoff delay handed to the scheduler
4. Bulk retry skips tasks without budget
5. Repair runs connect -> configure -> verify and keeps the agent id
6. Raising the retry budget

Run with:
    pytest tests/test_retry.py -v
"""

import asyncio
import pytest
from unittest.mock import patch

from core.contracts import REPAIR_ERROR_CODE, JobStatus, TaskStatus
from core.errors import ConflictError, NotFoundError, RetriesExhausted, ValidationError
from core.models import ActivityAction, ActivityType, ErrorDetails


async def _fail_directly(eng, task_id, step=TaskStatus.CONNECTING):
    """Put a task into FAILED without running the pipeline."""
    task = await eng.task_store.get(task_id)
    task.mark_step(step)
    task.mark_failed(f"Failed during {step.value} phase", step.error_code, ErrorDetails(phase=step.value))
    assert await eng.task_store.update(task)
    return task


class TestRetryTask:

    def test_exhausted_budget_leaves_task_unchanged(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            steps.fail("h1", "verify", "agent crashed")
            eng = make_engine(steps=steps)
            await eng.orchestrator.start()
            job = await eng.create(hostnames=["h1"], max_retries=1)
            await eng.controller.start(job.job_id)
            await eng.settle()

            task = await eng.task_for(job.job_id, "h1")
            await eng.retry.retry_task(task.task_id)
            await eng.settle()
            before = await eng.task_store.get(task.task_id)

            with pytest.raises(RetriesExhausted) as exc:
                await eng.retry.retry_task(task.task_id)
            after = await eng.task_store.get(task.task_id)
            await eng.orchestrator.stop()
            return before, after, exc.value, steps.history

        before, after, error, history = asyncio.run(scenario())
        assert before.status == TaskStatus.FAILED
        assert before.attempt_count == 1
        assert error.status_code == 409
        assert (error.attempt_count, error.max_retries) == (1, 1)
        assert after.version == before.version
        assert after.status == TaskStatus.FAILED
        assert [h for h in history if h[1] == "verify"] == [("h1", "verify", 0), ("h1", "verify", 1)]

    def test_only_failed_tasks_retry(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1"])
            task = await eng.task_for(job.job_id, "h1")
            with pytest.raises(ConflictError):
                await eng.retry.retry_task(task.task_id)
            with pytest.raises(NotFoundError):
                await eng.retry.retry_task(999)

        asyncio.run(scenario())

    def test_backoff_passed_to_scheduler(self, make_engine):
        async def scenario():
            eng = make_engine(retry_backoff_base_seconds=5.0)
            job = await eng.create(hostnames=["h1"], max_retries=3)
            await eng.controller.start(job.job_id)
            task = await eng.task_for(job.job_id, "h1")
            await _fail_directly(eng, task.task_id)

            with patch.object(eng.orchestrator.scheduler, "submit_later") as submit_later:
                retried = await eng.retry.retry_task(task.task_id)
            job_after = await eng.job_service.get_job(job.job_id)
            return retried, submit_later, job_after

        retried, submit_later, job_after = asyncio.run(scenario())
        item, delay = submit_later.call_args.args
        assert delay == 5.0
        assert item.task_id == retried.task_id
        assert item.generation == retried.generation
        assert retried.status == TaskStatus.PENDING
        assert retried.attempt_count == 1
        assert job_after.status == JobStatus.IN_PROGRESS
        assert job_after.completed_at is None

    def test_cancelled_job_rejects_retry(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1"])
            await eng.controller.start(job.job_id)
            task = await eng.task_for(job.job_id, "h1")
            await _fail_directly(eng, task.task_id)
            await eng.controller.cancel(job.job_id)
            with pytest.raises(ConflictError):
                await eng.retry.retry_task(task.task_id)
            with pytest.raises(ConflictError):
                await eng.retry.bulk_retry_failed(job.job_id)

        asyncio.run(scenario())


class TestBulkRetry:

    def test_bulk_retry_skips_exhausted(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            steps.fail("h1", "connect")
            steps.fail("h2", "install")
            eng = make_engine(steps=steps)
            await eng.orchestrator.start()
            job = await eng.create(hostnames=["h1", "h2", "h3"], max_retries=1)
            await eng.controller.start(job.job_id)
            await eng.settle()

            first = await eng.retry.bulk_retry_failed(job.job_id)
            await eng.settle()
            second = await eng.retry.bulk_retry_failed(job.job_id)
            final = await eng.job_service.get_job(job.job_id)
            activity = await eng.activity_store.list_for(ActivityType.DEPLOYMENT_JOB, job.job_id)
            await eng.orchestrator.stop()
            return first, second, final, activity

        first, second, final, activity = asyncio.run(scenario())
        assert sorted(t.target_host for t in first) == ["h1", "h2"]
        assert second == []
        assert final.status == JobStatus.PARTIALLY_COMPLETED
        assert final.progress.failed_deployments == 2
        assert [a.action for a in activity].count(ActivityAction.JOB_BULK_RETRY) == 2

    def test_unknown_job(self, make_engine):
        async def scenario():
            eng = make_engine()
            with pytest.raises(NotFoundError):
                await eng.retry.bulk_retry_failed(12)

        asyncio.run(scenario())


class TestRepair:

    def test_repair_completed_task(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            eng = make_engine(steps=steps)
            await eng.orchestrator.start()
            job = await eng.create(hostnames=["h1"])
            await eng.controller.start(job.job_id)
            await eng.settle()
            installed = await eng.task_for(job.job_id, "h1")
            steps.history.clear()

            await eng.retry.repair_task(installed.task_id)
            await eng.settle()
            repaired = await eng.task_for(job.job_id, "h1")
            final = await eng.job_service.get_job(job.job_id)
            await eng.orchestrator.stop()
            return installed, repaired, final, steps.history

        installed, repaired, final, history = asyncio.run(scenario())
        assert [h[1] for h in history] == ["connect", "configure", "verify"]
        assert repaired.status == TaskStatus.COMPLETED
        assert repaired.current_step == "repaired"
        assert repaired.agent_id == installed.agent_id
        assert repaired.generation > installed.generation
        assert final.status == JobStatus.COMPLETED

    def test_repair_failure(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            steps.fail("h1", "connect", "host unreachable")
            eng = make_engine(steps=steps)
            await eng.orchestrator.start()
            job = await eng.create(hostnames=["h1"])
            await eng.controller.start(job.job_id)
            await eng.settle()
            task = await eng.task_for(job.job_id, "h1")

            steps.clear_failure("h1", "connect")
            steps.fail("h1", "configure", "config rejected")
            await eng.retry.repair_task(task.task_id)
            await eng.settle()
            repaired = await eng.task_for(job.job_id, "h1")
            await eng.orchestrator.stop()
            return repaired

        repaired = asyncio.run(scenario())
        assert repaired.status == TaskStatus.FAILED
        assert repaired.error_code == REPAIR_ERROR_CODE
        assert repaired.error_message == "Agent repair failed - manual intervention required"
        assert repaired.error_details.phase == "configuring"
        assert repaired.error_details.original_error == "config rejected"


class TestRetryBudget:

    def test_extend_budget_allows_retry(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1"], max_retries=0)
            await eng.controller.start(job.job_id)
            task = await eng.task_for(job.job_id, "h1")
            await _fail_directly(eng, task.task_id)

            with pytest.raises(RetriesExhausted):
                await eng.retry.retry_task(task.task_id)
            extended = await eng.retry.extend_retry_budget(task.task_id, 2)
            with patch.object(eng.orchestrator.scheduler, "submit_later"):
                retried = await eng.retry.retry_task(task.task_id)
            return extended, retried

        extended, retried = asyncio.run(scenario())
        assert extended.max_retries == 2
        assert extended.deployment_logs[-1].message == "Retry budget changed from 0 to 2"
        assert retried.attempt_count == 1

    def test_budget_below_attempts_rejected(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1"], max_retries=3)
            await eng.controller.start(job.job_id)
            task = await eng.task_for(job.job_id, "h1")
            await _fail_directly(eng, task.task_id)
            with patch.object(eng.orchestrator.scheduler, "submit_later"):
                await eng.retry.retry_task(task.task_id)
            with pytest.raises(ValidationError):
                await eng.retry.extend_retry_budget(task.task_id, 0)

        asyncio.run(scenario())
