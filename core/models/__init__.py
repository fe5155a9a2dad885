# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the agent deployment engine.
"""

from core.models.job import DeploymentJob, TargetSpec, JobProgress
from core.models.task import DeploymentTask, ErrorDetails, DeploymentLogEntry
from core.models.events import ActivityEntry, ActivityType, ActivityAction

__all__ = [
    # Job
    "DeploymentJob",
    "TargetSpec",
    "JobProgress",
    # Task
    "DeploymentTask",
    "ErrorDetails",
    "DeploymentLogEntry",
    # Activity
    "ActivityEntry",
    "ActivityType",
    "ActivityAction",
]
