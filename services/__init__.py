# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Business logic layer
# PURPOSE: Job creation and reads, task mutation, pre-flight, audit trail
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Services Module

Services coordinate between repositories and the orchestrator.

Usage:
    from services import JobService, ActivityService

    job_service = JobService(job_store, task_store, ActivityService(activity_store))
    job = await job_service.create_job("rollout", TargetSpec(hostnames=["web-01"]), "linux")
"""

from .activity_service import ActivityService
from .task_service import TaskService, TaskMutation
from .preflight import TargetValidator, PreflightResult, is_valid_hostname
from .job_service import JobService

__all__ = [
    "ActivityService",
    "TaskService",
    "TaskMutation",
    "TargetValidator",
    "PreflightResult",
    "is_valid_hostname",
    "JobService",
]
