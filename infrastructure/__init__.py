# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Infrastructure - Locking, usage counters, repository base
# PURPOSE: Cross-cutting infrastructure shared by services and repositories
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Infrastructure module for the deployment engine.

Provides:
- JobLockService: per-job locks (in-process or PostgreSQL advisory)
- UsageStore: keyed usage counters with TTL windows
- AsyncBaseRepository: error handling base for psycopg repositories
"""

from infrastructure.base_repository import AsyncBaseRepository, RepositoryError
from infrastructure.locking import (
    JobLockService,
    InProcessLockService,
    LockService,
)
from infrastructure.usage_store import (
    UsageStore,
    InMemoryUsageStore,
    PostgresUsageStore,
    usage_key,
)

__all__ = [
    # Repository base
    "AsyncBaseRepository",
    "RepositoryError",
    # Locking
    "JobLockService",
    "InProcessLockService",
    "LockService",
    # Usage
    "UsageStore",
    "InMemoryUsageStore",
    "PostgresUsageStore",
    "usage_key",
]
