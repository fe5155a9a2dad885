# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for deployment jobs and tasks
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
API Routes

Thin wrappers over JobService, JobController and RetryManager.
Caller-facing errors map to status codes:

    ValidationError    400
    NotFoundError      404
    ConflictError      409 (RetriesExhausted included)
    QuotaExceeded      429
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from core.contracts import JobStatus, LogLevel
from core.errors import DeploymentError, ValidationError
from core.models import TargetSpec
from .schemas import (
    CancelRequest,
    ErrorResponse,
    JobCreate,
    JobListResponse,
    JobLogPageResponse,
    JobResponse,
    RetryBudgetUpdate,
    TaskListResponse,
    TaskResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Illegal lifecycle transition"},
}


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_job_service = None
_orchestrator = None
_activity_service = None


def set_services(job_service, orchestrator, activity_service=None):
    """Set service instances for dependency injection."""
    global _job_service, _orchestrator, _activity_service
    _job_service = job_service
    _orchestrator = orchestrator
    _activity_service = activity_service


def get_job_service():
    if _job_service is None:
        raise HTTPException(500, "Services not initialized")
    return _job_service


def get_orchestrator():
    if _orchestrator is None:
        raise HTTPException(500, "Orchestrator not initialized")
    return _orchestrator


def _http_error(e: DeploymentError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(e.status_code, {"message": e.message, "errors": e.errors})
    return HTTPException(e.status_code, e.message)


def _job(job) -> JobResponse:
    return JobResponse.model_validate(job)


def _task(task) -> TaskResponse:
    return TaskResponse.model_validate(task)


# ============================================================================
# HEALTH / STATUS
# ============================================================================

@router.get("/livez", tags=["Health"])
async def livez():
    """Process alive."""
    return {"status": "alive"}


@router.get("/orchestrator/status", tags=["Orchestrator"])
async def get_orchestrator_status():
    """
    Get orchestrator status and statistics.

    Includes leader role, watchdog counters and worker pool state.
    """
    stats = get_orchestrator().stats
    return {
        "status": "running" if stats["running"] else "stopped",
        "role": stats["role"],
        "started_at": stats["started_at"],
        "uptime_seconds": stats["uptime_seconds"],
        "metrics": {
            "watchdog_cycles": stats["watchdog_cycles"],
            "last_watchdog_at": stats["last_watchdog_at"],
            "tasks_timed_out": stats["tasks_timed_out"],
            "tasks_requeued": stats["tasks_requeued"],
            "errors": stats["errors"],
        },
        "scheduler": stats["scheduler"],
        "executor": stats["executor"],
    }


@router.get("/stats", tags=["Jobs"])
async def get_stats():
    """Deployment statistics across all jobs."""
    return await get_job_service().get_stats()


# ============================================================================
# JOBS
# ============================================================================

@router.post(
    "/jobs",
    response_model=JobResponse,
    status_code=201,
    tags=["Jobs"],
    responses={
        201: {"description": "Job created"},
        400: {"model": ErrorResponse, "description": "Invalid target spec"},
        429: {"model": ErrorResponse, "description": "Job quota exceeded"},
    },
)
async def create_job(request: JobCreate):
    """
    Create a deployment job.

    Validates and expands targets. The job is created pending;
    POST /jobs/{job_id}/start runs it.
    """
    service = get_job_service()
    try:
        job = await service.create_job(
            name=request.name,
            description=request.description,
            targets=TargetSpec(**request.targets.model_dump()),
            target_os=request.target_os,
            max_retries=request.max_retries,
            owner=request.owner,
            tenant_id=request.tenant_id,
        )
    except DeploymentError as e:
        raise _http_error(e)

    logger.info(f"Created job {job.job_id} with {job.progress.total_targets} targets")
    return _job(job)


@router.get("/jobs", response_model=JobListResponse, tags=["Jobs"])
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    owner: Optional[str] = Query(None, description="Filter by owner"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
):
    """List jobs, newest first."""
    result = await get_job_service().list_jobs(status=status, owner=owner, page=page, limit=limit)
    return JobListResponse(
        jobs=[_job(j) for j in result["jobs"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
    )


@router.get("/jobs/{job_id}", response_model=JobResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job(job_id: int):
    try:
        return _job(await get_job_service().get_job(job_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.delete("/jobs/{job_id}", status_code=204, tags=["Jobs"], responses=ERROR_RESPONSES)
async def delete_job(job_id: int):
    """Delete a job and its tasks. Rejected while the job is in progress."""
    try:
        await get_orchestrator().controller.delete(job_id)
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/jobs/{job_id}/start", response_model=JobResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def start_job(job_id: int):
    try:
        return _job(await get_orchestrator().controller.start(job_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/jobs/{job_id}/pause", response_model=JobResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def pause_job(job_id: int):
    try:
        return _job(await get_orchestrator().controller.pause(job_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/jobs/{job_id}/resume", response_model=JobResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def resume_job(job_id: int):
    try:
        return _job(await get_orchestrator().controller.resume(job_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def cancel_job(job_id: int, request: Optional[CancelRequest] = None):
    """Cancel a job. Executing tasks stop at their next step boundary."""
    reason = request.reason if request else None
    try:
        return _job(await get_orchestrator().controller.cancel(job_id, reason))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/jobs/{job_id}/retry-failed", response_model=TaskListResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def retry_failed(job_id: int):
    """Retry every failed task of the job that still has retry budget."""
    try:
        tasks = await get_orchestrator().retry.bulk_retry_failed(job_id)
    except DeploymentError as e:
        raise _http_error(e)
    return TaskListResponse(tasks=[_task(t) for t in tasks], total=len(tasks))


@router.get("/jobs/{job_id}/tasks", response_model=TaskListResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job_tasks(job_id: int):
    try:
        tasks = await get_job_service().get_job_tasks(job_id)
    except DeploymentError as e:
        raise _http_error(e)
    return TaskListResponse(tasks=[_task(t) for t in tasks], total=len(tasks))


@router.get("/jobs/{job_id}/logs", response_model=JobLogPageResponse, tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job_logs(
    job_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    level: Optional[LogLevel] = Query(None),
):
    """Merged deployment logs of all tasks, newest first."""
    try:
        result = await get_job_service().get_job_logs(job_id, page=page, limit=limit, level=level)
    except DeploymentError as e:
        raise _http_error(e)
    return JobLogPageResponse(**result)


@router.get("/jobs/{job_id}/summary", tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job_summary(job_id: int):
    try:
        return await get_job_service().get_status_summary(job_id)
    except DeploymentError as e:
        raise _http_error(e)


@router.get("/jobs/{job_id}/errors", tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job_errors(job_id: int):
    """Failed tasks with error code, message, details and attempt count."""
    try:
        errors = await get_job_service().get_error_logs(job_id)
    except DeploymentError as e:
        raise _http_error(e)
    return {"job_id": job_id, "errors": errors, "total": len(errors)}


@router.get("/jobs/{job_id}/activity", tags=["Jobs"], responses=ERROR_RESPONSES)
async def get_job_activity(job_id: int, limit: int = Query(100, ge=1, le=1000)):
    """Audit trail of job-level transitions."""
    if _activity_service is None:
        raise HTTPException(500, "Activity service not initialized")
    try:
        await get_job_service().get_job(job_id)
    except DeploymentError as e:
        raise _http_error(e)
    entries = await _activity_service.for_job(job_id, limit)
    return {"job_id": job_id, "activity": [e.model_dump(mode="json") for e in entries]}


# ============================================================================
# TASKS
# ============================================================================

@router.get("/tasks/{task_id}", response_model=TaskResponse, tags=["Tasks"], responses=ERROR_RESPONSES)
async def get_task(task_id: int):
    try:
        return _task(await get_job_service().get_task(task_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/retry", response_model=TaskResponse, tags=["Tasks"], responses=ERROR_RESPONSES)
async def retry_task(task_id: int):
    """Retry a failed task after backoff. 409 when retries are exhausted."""
    try:
        return _task(await get_orchestrator().retry.retry_task(task_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/repair", response_model=TaskResponse, tags=["Tasks"], responses=ERROR_RESPONSES)
async def repair_task(task_id: int):
    """Run the connect/configure/verify repair pipeline on a task."""
    try:
        return _task(await get_orchestrator().retry.repair_task(task_id))
    except DeploymentError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/retry-budget", response_model=TaskResponse, tags=["Tasks"], responses=ERROR_RESPONSES)
async def extend_retry_budget(task_id: int, request: RetryBudgetUpdate):
    try:
        return _task(await get_orchestrator().retry.extend_retry_budget(task_id, request.max_retries))
    except DeploymentError as e:
        raise _http_error(e)
