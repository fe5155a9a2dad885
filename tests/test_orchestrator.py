# ============================================================================
# ORCHESTRATOR TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Watchdog and leadership
# PURPOSE: Verify stuck-task timeout, orphan requeue and leader failover
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Tests

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone

from core.contracts import JobStatus, TaskStatus
from core.models import ActivityAction, ActivityType
from orchestrator import Orchestrator


async def _wedge(eng, task_id, step, age_seconds):
    """Leave a task in an active step with an old updated_at."""
    task = await eng.task_store.get(task_id)
    task.mark_step(TaskStatus.CONNECTING)
    task.mark_step(step)
    task.updated_at = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
    assert await eng.task_store.update(task)
    return task


class TestStuckTasks:

    def test_old_active_task_is_failed(self, make_engine):
        async def scenario():
            eng = make_engine(stuck_task_seconds=60)
            job = await eng.create(hostnames=["h1", "h2"])
            await eng.controller.start(job.job_id)
            old = await eng.task_for(job.job_id, "h1")
            fresh = await eng.task_for(job.job_id, "h2")
            wedged = await _wedge(eng, old.task_id, TaskStatus.INSTALLING, 600)
            await _wedge(eng, fresh.task_id, TaskStatus.CONNECTING, 5)

            timed_out = await eng.orchestrator.check_stuck_tasks()
            failed = await eng.task_store.get(old.task_id)
            untouched = await eng.task_store.get(fresh.task_id)
            job_after = await eng.job_service.get_job(job.job_id)
            activity = await eng.activity_store.list_for(ActivityType.DEPLOYMENT_TASK, old.task_id)
            return wedged, timed_out, failed, untouched, job_after, activity, eng.orchestrator.stats

        wedged, timed_out, failed, untouched, job_after, activity, stats = asyncio.run(scenario())
        assert timed_out == 1
        assert failed.status == TaskStatus.FAILED
        assert failed.error_code == TaskStatus.INSTALLING.error_code
        assert failed.error_message == "Failed during installing phase"
        assert "stuck in installing" in failed.error_details.original_error
        assert failed.generation == wedged.generation + 1
        assert untouched.status == TaskStatus.CONNECTING
        assert job_after.progress.failed_deployments == 1
        assert job_after.status == JobStatus.IN_PROGRESS
        assert ActivityAction.TASK_TIMED_OUT in [a.action for a in activity]
        assert stats["tasks_timed_out"] == 1

    def test_stuck_repair_fails_with_repair_code(self, make_engine):
        async def scenario():
            eng = make_engine(stuck_task_seconds=60)
            job = await eng.create(hostnames=["h1"])
            await eng.controller.start(job.job_id)
            task = await eng.task_for(job.job_id, "h1")
            stored = await eng.task_store.get(task.task_id)
            stored.prepare_repair()
            assert await eng.task_store.update(stored)
            await _wedge(eng, task.task_id, TaskStatus.CONFIGURING, 600)

            timed_out = await eng.orchestrator.check_stuck_tasks()
            return timed_out, await eng.task_store.get(task.task_id)

        timed_out, failed = asyncio.run(scenario())
        assert timed_out == 1
        assert failed.status == TaskStatus.FAILED
        assert failed.error_code == "ERR_REPAIR_FAILED"
        assert failed.error_message == "Agent repair failed - manual intervention required"
        assert failed.is_repairing is False

    def test_running_task_is_left_alone(self, make_engine, gated_steps):
        async def scenario():
            steps = gated_steps()
            steps.hold("h1", "connect")
            eng = make_engine(steps=steps, stuck_task_seconds=0)
            await eng.orchestrator.start()
            job = await eng.create(hostnames=["h1"])
            await eng.controller.start(job.job_id)
            await steps.wait_entered("h1", "connect")

            timed_out = await eng.orchestrator.check_stuck_tasks()
            steps.release("h1", "connect")
            await eng.settle()
            task = await eng.task_for(job.job_id, "h1")
            await eng.orchestrator.stop()
            return timed_out, task

        timed_out, task = asyncio.run(scenario())
        assert timed_out == 0
        assert task.status == TaskStatus.COMPLETED


class TestRequeue:

    def test_orphans_requeued_on_start(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1", "h2"])
            # Job marked in progress by a process that died before running anything
            stored = await eng.job_store.get(job.job_id)
            stored.mark_started()
            assert await eng.job_store.update(stored)

            await eng.orchestrator.start()
            await eng.settle()
            final = await eng.job_service.get_job(job.job_id)
            requeued = eng.orchestrator.stats["tasks_requeued"]
            again = await eng.orchestrator.requeue_orphans()
            await eng.orchestrator.stop()
            return final, requeued, again

        final, requeued, again = asyncio.run(scenario())
        assert requeued == 2
        assert again == 0
        assert final.status == JobStatus.COMPLETED

    def test_paused_job_is_not_requeued(self, make_engine):
        async def scenario():
            eng = make_engine()
            job = await eng.create(hostnames=["h1"])
            stored = await eng.job_store.get(job.job_id)
            stored.mark_started()
            stored.mark_paused()
            assert await eng.job_store.update(stored)
            return await eng.orchestrator.requeue_orphans()

        assert asyncio.run(scenario()) == 0


class TestLeadership:

    def test_standby_promotes_after_leader_stops(self, make_engine):
        async def scenario():
            eng = make_engine(watchdog_interval_seconds=0.01)
            standby = Orchestrator(
                eng.job_store, eng.task_store, eng.activity, eng.locks, eng.steps, eng.defaults
            )
            await eng.orchestrator.start()
            await standby.start()
            roles = [eng.orchestrator.is_leader, standby.is_leader]

            await eng.orchestrator.stop()
            for _ in range(100):
                if standby.is_leader:
                    break
                await asyncio.sleep(0.01)
            roles.append(standby.is_leader)
            role = standby.stats["role"]
            await standby.stop()
            return roles, role, eng.locks.holds_leader_lock

        roles, role, still_held = asyncio.run(scenario())
        assert roles == [True, False, True]
        assert role == "leader"
        assert still_held is False
