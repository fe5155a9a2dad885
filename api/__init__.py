# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for deployment jobs
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the deployment orchestrator.
"""

from .routes import router, set_services
from .schemas import (
    JobCreate,
    JobResponse,
    TaskResponse,
)

__all__ = [
    "router",
    "set_services",
    "JobCreate",
    "JobResponse",
    "TaskResponse",
]
