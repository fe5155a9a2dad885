# ============================================================================
# AGENT DEPLOYMENT ORCHESTRATOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - FastAPI application entry point
# PURPOSE: Wire stores, services and the orchestrator; serve the HTTP API
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Agent Deployment Orchestrator Main Application

FastAPI application that:
1. Provides HTTP API for deployment jobs
2. Runs the task worker pool and watchdog in the background
3. Manages the storage backend (in-memory or PostgreSQL)

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from __version__ import __version__, BUILD_DATE, EPOCH
from core.config import Defaults, StorageBackend, get_defaults
from core.logging import configure_logging, get_logger
from handlers.network import probe_hostname
from infrastructure import (
    InMemoryUsageStore,
    InProcessLockService,
    LockService,
    PostgresUsageStore,
)
from repositories import (
    ActivityRepository,
    InMemoryActivityStore,
    InMemoryJobStore,
    InMemoryTaskStore,
    JobRepository,
    TaskRepository,
    close_pool,
    ensure_schema,
    init_pool,
)
from repositories.database import TABLE_USAGE
from services import ActivityService, JobService, TargetValidator
from orchestrator import Orchestrator
from worker import RegisteredStepExecutor, SimulatedStepExecutor
from api.routes import router, set_services

configure_logging()
logger = get_logger(__name__)

# Global instances
_orchestrator: Optional[Orchestrator] = None


async def build_components(defaults: Defaults) -> Dict[str, Any]:
    """
    Create stores, services and the orchestrator for the configured backend.

    Returns:
        dict with job_service, activity_service, orchestrator, pool
    """
    pool = None
    if defaults.database.storage == StorageBackend.POSTGRES:
        pool = await init_pool(defaults.database)
        if defaults.database.ensure_schema:
            await ensure_schema(pool)
        job_store = JobRepository(pool)
        task_store = TaskRepository(pool)
        activity_store = ActivityRepository(pool)
        locks = LockService(pool)
        usage = PostgresUsageStore(pool, TABLE_USAGE)
    else:
        job_store = InMemoryJobStore()
        task_store = InMemoryTaskStore()
        activity_store = InMemoryActivityStore()
        locks = InProcessLockService()
        usage = InMemoryUsageStore()

    engine = defaults.engine
    if engine.simulated:
        steps = SimulatedStepExecutor(
            failure_rate=engine.simulated_failure_rate,
            step_delay=engine.simulated_step_delay,
            seed=engine.simulated_seed,
        )
    else:
        steps = RegisteredStepExecutor()

    probe = probe_hostname if os.environ.get("DEPLOY_PREFLIGHT_PROBE", "").lower() == "true" else None
    activity_service = ActivityService(activity_store)
    job_service = JobService(
        job_store,
        task_store,
        activity_service,
        validator=TargetValidator(engine.max_targets_per_job, probe=probe),
        usage_store=usage,
        quota=defaults.quota,
        engine=engine,
    )
    orchestrator = Orchestrator(job_store, task_store, activity_service, locks, steps, engine)

    logger.info(
        f"Components built (storage={defaults.database.storage.value}, "
        f"steps={type(steps).__name__}, workers={engine.max_workers})"
    )
    return {
        "job_service": job_service,
        "activity_service": activity_service,
        "orchestrator": orchestrator,
        "pool": pool,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _orchestrator

    logger.info(f"Starting Agent Deployment Orchestrator v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    components = await build_components(get_defaults())
    _orchestrator = components["orchestrator"]

    set_services(
        job_service=components["job_service"],
        orchestrator=_orchestrator,
        activity_service=components["activity_service"],
    )

    await _orchestrator.start()
    logger.info("Orchestrator started")

    yield

    # Shutdown
    logger.info("Shutting down Agent Deployment Orchestrator...")

    await _orchestrator.stop()
    if components["pool"] is not None:
        await close_pool()

    logger.info("Agent Deployment Orchestrator stopped")


# Create FastAPI app
app = FastAPI(
    title="Agent Deployment Orchestrator",
    description=f"Epoch {EPOCH} agent deployment orchestration engine",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Agent Deployment Orchestrator",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
