# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Foundation - Exceptions shared by services and API
# PURPOSE: Caller-facing errors and the step failure signal
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: DeploymentError, ValidationError, NotFoundError, ConflictError,
#          RetriesExhausted, QuotaExceeded, StepFailure
# ============================================================================
"""
Error taxonomy.

Caller-facing errors (validation / not found / conflict) are raised
synchronously by services and mapped to HTTP status codes by the API.
StepFailure is raised inside step executors and is always caught by the
task executor - it is recorded on the task and never reaches callers.
"""

from typing import Any, Dict, List, Optional


class DeploymentError(Exception):
    """Base exception for caller-facing deployment errors."""

    status_code: int = 500

    def __init__(self, message: str, entity_id: Optional[int] = None):
        self.message = message
        self.entity_id = entity_id
        super().__init__(message)


class ValidationError(DeploymentError):
    """Malformed request or target spec. Raised before any task exists."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class NotFoundError(DeploymentError):
    """Unknown job or task id."""

    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        super().__init__(f"{entity_type} not found: {entity_id}", entity_id)


class ConflictError(DeploymentError):
    """Illegal lifecycle transition."""

    status_code = 409


class RetriesExhausted(ConflictError):
    """Task has used its whole retry budget."""

    def __init__(self, task_id: int, attempt_count: int, max_retries: int):
        self.attempt_count = attempt_count
        self.max_retries = max_retries
        super().__init__(
            f"Task {task_id} exhausted its retries "
            f"({attempt_count}/{max_retries}); repair or raise the retry budget",
            task_id,
        )


class QuotaExceeded(ConflictError):
    """Too many jobs created within the usage window."""

    status_code = 429


class StepFailure(Exception):
    """
    A pipeline step failed.

    Raised by StepExecutor implementations; caught by the task executor.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggested_fix: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        self.suggested_fix = suggested_fix
        super().__init__(message)


__all__ = [
    "DeploymentError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "RetriesExhausted",
    "QuotaExceeded",
    "StepFailure",
]
