# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Persistence layer
# PURPOSE: Store interfaces with in-memory and PostgreSQL backends
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Repositories Module

Store interfaces plus two backends. The PostgreSQL backend uses psycopg3
async with connection pooling.

Usage:
    from repositories import JobRepository, TaskRepository

    pool = await init_pool(DatabaseDefaults.from_env())
    job_repo = JobRepository(pool)
    job = await job_repo.get(job_id)
"""

from .base import JobStore, TaskStore, ActivityStore
from .memory import InMemoryJobStore, InMemoryTaskStore, InMemoryActivityStore
from .database import init_pool, close_pool
from .job_repo import JobRepository
from .task_repo import TaskRepository
from .activity_repo import ActivityRepository
from .schema import ensure_schema

__all__ = [
    "JobStore",
    "TaskStore",
    "ActivityStore",
    "InMemoryJobStore",
    "InMemoryTaskStore",
    "InMemoryActivityStore",
    "init_pool",
    "close_pool",
    "JobRepository",
    "TaskRepository",
    "ActivityRepository",
    "ensure_schema",
]
