# ============================================================================
# MODEL TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Job / task models and contracts
# PURPOSE: Verify lifecycle methods, transition tables and computed fields
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Model Tests

Run with:
    pytest tests/test_models.py -v
"""

import pytest

from core.config import EngineDefaults
from core.contracts import JobStatus, TargetOS, TaskStatus, REPAIR_STEP
from core.errors import NotFoundError, RetriesExhausted, ValidationError
from core.models import DeploymentJob, DeploymentTask, ErrorDetails, JobProgress


def _task(**kwargs):
    kwargs.setdefault("task_id", 1)
    kwargs.setdefault("job_id", 1)
    kwargs.setdefault("target_host", "web-01")
    kwargs.setdefault("target_os", "linux")
    return DeploymentTask(**kwargs)


def _job(**kwargs):
    kwargs.setdefault("job_id", 1)
    kwargs.setdefault("name", "rollout")
    kwargs.setdefault("target_os", "linux")
    return DeploymentJob(**kwargs)


# ============================================================================
# CONTRACTS
# ============================================================================

class TestContracts:

    def test_step_error_codes(self):
        assert TaskStatus.CONNECTING.error_code == "ERR_CONNECTING_FAILED"
        assert TaskStatus.VERIFYING.error_code == "ERR_VERIFYING_FAILED"

    def test_terminal_states(self):
        assert {s for s in TaskStatus if s.is_terminal()} == {
            TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED,
        }
        assert not JobStatus.PAUSED.is_terminal()
        assert JobStatus.PARTIALLY_COMPLETED.is_terminal()

    @pytest.mark.parametrize("value,expected", [
        ("windows", TargetOS.WINDOWS),
        ("Windows Server 2022", TargetOS.WINDOWS),
        ("Ubuntu", TargetOS.LINUX),
        ("darwin", TargetOS.MACOS),
        ("plan9", None),
    ])
    def test_target_os_parse(self, value, expected):
        assert TargetOS.parse(value) == expected

    def test_installation_paths(self):
        assert TargetOS.WINDOWS.installation_path == "C:\\Program Files\\Agent"
        assert TargetOS.LINUX.installation_path == "/opt/agent"
        assert TargetOS.MACOS.installation_path == "/Library/Agent"


# ============================================================================
# JOB
# ============================================================================

class TestJobModel:

    def test_initial_progress(self):
        progress = JobProgress.initial(4, 30)
        assert progress.total_targets == 4
        assert progress.pending_deployments == 4
        assert progress.estimated_time_remaining == 120
        assert progress.percent_complete == 0.0

    def test_empty_job_is_fully_complete(self):
        assert JobProgress.initial(0, 30).percent_complete == 100.0

    def test_start_only_from_pending(self):
        job = _job()
        job.mark_started()
        assert job.status == JobStatus.IN_PROGRESS
        assert job.started_at is not None
        with pytest.raises(ValueError):
            job.mark_started()

    def test_pause_resume_cancel(self):
        job = _job(status=JobStatus.IN_PROGRESS)
        job.mark_paused()
        assert job.status == JobStatus.PAUSED
        job.mark_resumed()
        assert job.status == JobStatus.IN_PROGRESS
        job.mark_cancelled("operator")
        assert job.status == JobStatus.CANCELLED
        assert job.cancel_reason == "operator"
        assert job.completed_at is not None

    def test_terminal_job_cannot_be_cancelled(self):
        job = _job(status=JobStatus.COMPLETED)
        with pytest.raises(ValueError):
            job.mark_cancelled()


# ============================================================================
# TASK
# ============================================================================

class TestTaskModel:

    def test_pipeline_forward(self):
        task = _task()
        task.mark_step(TaskStatus.CONNECTING)
        assert task.current_step == "connecting"
        assert task.started_at is not None
        task.mark_step(TaskStatus.DOWNLOADING)
        with pytest.raises(ValueError):
            task.mark_step(TaskStatus.CONNECTING)

    def test_completion_only_from_verifying(self):
        task = _task(status=TaskStatus.INSTALLING)
        with pytest.raises(ValueError):
            task.mark_completed("a", "1", "/opt/agent")

        task = _task(status=TaskStatus.VERIFYING)
        task.mark_completed("agent-1", "2.1.0", "/opt/agent")
        assert task.status == TaskStatus.COMPLETED
        assert task.service_status.value == "running"
        assert task.last_contact_at is not None

    def test_pending_cannot_fail(self):
        with pytest.raises(ValueError):
            _task().mark_failed("x", "ERR")

    def test_pause_bumps_generation(self):
        task = _task(status=TaskStatus.INSTALLING, generation=3)
        task.mark_paused()
        assert task.status == TaskStatus.PAUSED
        assert task.generation == 4
        task.prepare_resume()
        assert task.status == TaskStatus.PENDING
        assert task.generation == 5

    def test_prepare_retry(self):
        task = _task(
            status=TaskStatus.FAILED,
            error_message="bad",
            error_code="ERR_INSTALLING_FAILED",
            error_details=ErrorDetails(phase="installing"),
        )
        assert task.prepare_retry() is True
        assert task.status == TaskStatus.PENDING
        assert task.attempt_count == 1
        assert task.generation == 1
        assert task.error_message is None
        assert task.error_details is None

    def test_prepare_retry_refused_when_exhausted(self):
        task = _task(status=TaskStatus.FAILED, attempt_count=3, max_retries=3)
        assert task.prepare_retry() is False
        assert task.status == TaskStatus.FAILED
        assert task.attempt_count == 3

    def test_prepare_repair_from_completed(self):
        task = _task(status=TaskStatus.COMPLETED, generation=2)
        task.prepare_repair()
        assert task.status == TaskStatus.PENDING
        assert task.current_step == REPAIR_STEP
        assert task.is_repairing
        assert task.generation == 3

    def test_log_uses_current_step(self):
        task = _task(status=TaskStatus.CONNECTING, current_step="connecting")
        task.log("hello")
        assert task.deployment_logs[-1].step == "connecting"
        assert task.deployment_logs[-1].level.value == "info"


# ============================================================================
# CONFIG / ERRORS
# ============================================================================

class TestBackoff:

    def test_exponential_with_cap(self):
        engine = EngineDefaults(retry_backoff_base_seconds=5.0, retry_backoff_max_seconds=30.0)
        assert engine.backoff_for(0) == 0
        assert engine.backoff_for(1) == 5.0
        assert engine.backoff_for(2) == 10.0
        assert engine.backoff_for(3) == 20.0
        assert engine.backoff_for(4) == 30.0

    def test_zero_base_disables_backoff(self):
        assert EngineDefaults(retry_backoff_base_seconds=0.0).backoff_for(3) == 0


class TestErrors:

    def test_status_codes(self):
        assert ValidationError("x").status_code == 400
        assert NotFoundError("Job", 7).status_code == 404
        assert RetriesExhausted(1, 3, 3).status_code == 409

    def test_validation_error_keeps_list(self):
        err = ValidationError("bad", errors=["a", "b"])
        assert err.errors == ["a", "b"]
        assert NotFoundError("Task", 9).message == "Task not found: 9"
