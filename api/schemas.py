# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API. Field names are camelCase on the
wire; snake_case is accepted on input as well.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.contracts import JobStatus, LogLevel, ServiceStatus, TaskStatus


class CamelModel(BaseModel):
    """Base for wire models: camelCase out, either case in."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class TargetsRequest(CamelModel):
    """Targets of a deployment request."""
    ip_ranges: List[str] = Field(default_factory=list)
    hostnames: List[str] = Field(default_factory=list)
    ip_segments: List[str] = Field(default_factory=list)


class JobCreate(CamelModel):
    """Request to create a new deployment job."""
    name: str = Field(..., min_length=1, max_length=256)
    description: Optional[str] = Field(None, max_length=2000)
    target_os: str = Field(..., min_length=1, max_length=64)
    targets: TargetsRequest
    max_retries: int = Field(default=3, ge=0, le=100)
    owner: Optional[str] = Field(None, max_length=128)
    tenant_id: Optional[str] = Field(None, max_length=128)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "name": "Q4 agent rollout",
                    "targetOs": "linux",
                    "targets": {
                        "ipRanges": ["10.0.0.1-10.0.0.20"],
                        "hostnames": ["web-01.internal"],
                        "ipSegments": ["10.0.1.0/28"],
                    },
                    "maxRetries": 3,
                }
            ]
        },
    )


class CancelRequest(CamelModel):
    """Request to cancel a job."""
    reason: Optional[str] = Field(None, max_length=2000)


class RetryBudgetUpdate(CamelModel):
    """Request to change a task's retry budget."""
    max_retries: int = Field(..., ge=0, le=100)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class ProgressResponse(CamelModel):
    total_targets: int
    successful_deployments: int
    failed_deployments: int
    pending_deployments: int
    cancelled_deployments: int = 0
    current_target: str = ""
    estimated_time_remaining: int = 0
    percent_complete: float = 0.0


class JobResponse(CamelModel):
    """Job response."""
    job_id: int
    name: str
    description: Optional[str] = None
    target_os: str
    targets: TargetsRequest
    max_retries: int
    status: JobStatus
    progress: ProgressResponse
    cancel_reason: Optional[str] = None
    owner: Optional[str] = None
    tenant_id: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime


class JobListResponse(CamelModel):
    """Page of jobs."""
    jobs: List[JobResponse]
    total: int
    page: int
    limit: int


class ErrorDetailsResponse(CamelModel):
    phase: str
    original_error: Optional[str] = None
    system_info: Dict[str, Any] = {}
    network_info: Dict[str, Any] = {}
    suggested_fix: Optional[str] = None


class LogEntryResponse(CamelModel):
    timestamp: datetime
    level: LogLevel
    message: str
    step: Optional[str] = None


class TaskResponse(CamelModel):
    """Task response."""
    task_id: int
    job_id: int
    target_host: str
    target_ip: Optional[str] = None
    target_os: str
    status: TaskStatus
    current_step: Optional[str] = None
    attempt_count: int
    max_retries: int
    agent_id: Optional[str] = None
    installed_version: Optional[str] = None
    installation_path: Optional[str] = None
    service_status: Optional[ServiceStatus] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_details: Optional[ErrorDetailsResponse] = None
    deployment_logs: List[LogEntryResponse] = []
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_contact_at: Optional[datetime] = None
    updated_at: datetime


class TaskListResponse(CamelModel):
    tasks: List[TaskResponse]
    total: int


class JobLogResponse(CamelModel):
    """One merged log line of a job."""
    timestamp: datetime
    level: LogLevel
    message: str
    step: Optional[str] = None
    task_id: int
    target_host: str
    target_ip: Optional[str] = None


class JobLogPageResponse(CamelModel):
    logs: List[JobLogResponse]
    total: int
    page: int
    limit: int


class ErrorResponse(BaseModel):
    """Error response."""
    detail: Any


__all__ = [
    "CamelModel",
    "TargetsRequest",
    "JobCreate",
    "CancelRequest",
    "RetryBudgetUpdate",
    "ProgressResponse",
    "JobResponse",
    "JobListResponse",
    "ErrorDetailsResponse",
    "LogEntryResponse",
    "TaskResponse",
    "TaskListResponse",
    "JobLogResponse",
    "JobLogPageResponse",
    "ErrorResponse",
]
