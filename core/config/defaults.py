# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for the worker pool, retries, quotas, storage
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for the deployment engine.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StorageBackend(str, Enum):
    """Where jobs, tasks and activity are persisted."""
    MEMORY = "memory"
    POSTGRES = "postgres"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineDefaults:
    """
    Defaults for task execution.

    Controls worker pool size, per-job concurrency, step timeouts,
    retry backoff and the watchdog.
    """
    # Worker pool
    max_workers: int = 16
    max_concurrent_per_job: int = 8

    # Step execution
    step_timeout_seconds: float = 300.0
    agent_version: str = "2.1.0"

    # Retry backoff: min(base * 2**(attempt-1), max)
    retry_backoff_base_seconds: float = 5.0
    retry_backoff_max_seconds: float = 300.0

    # Progress estimate per remaining target
    seconds_per_target: int = 30

    # Creation gate
    max_targets_per_job: int = 4096

    # Watchdog
    watchdog_interval_seconds: float = 30.0
    stuck_task_seconds: float = 1800.0

    # Simulated step executor
    simulated: bool = True
    simulated_failure_rate: float = 0.0
    simulated_step_delay: float = 0.0
    simulated_seed: int = 0

    def backoff_for(self, attempt_count: int) -> float:
        """Delay before a retry of the given attempt number."""
        if attempt_count <= 0 or self.retry_backoff_base_seconds <= 0:
            return 0.0
        delay = self.retry_backoff_base_seconds * (2 ** (attempt_count - 1))
        return min(delay, self.retry_backoff_max_seconds)

    @classmethod
    def from_env(cls) -> "EngineDefaults":
        """Create from environment variables."""
        return cls(
            max_workers=int(os.getenv("DEPLOY_MAX_WORKERS", 16)),
            max_concurrent_per_job=int(os.getenv("DEPLOY_MAX_PER_JOB", 8)),
            step_timeout_seconds=float(os.getenv("DEPLOY_STEP_TIMEOUT_SEC", 300)),
            agent_version=os.getenv("DEPLOY_AGENT_VERSION", "2.1.0"),
            retry_backoff_base_seconds=float(os.getenv("DEPLOY_RETRY_BACKOFF_SEC", 5)),
            retry_backoff_max_seconds=float(os.getenv("DEPLOY_RETRY_BACKOFF_MAX_SEC", 300)),
            max_targets_per_job=int(os.getenv("DEPLOY_MAX_TARGETS_PER_JOB", 4096)),
            watchdog_interval_seconds=float(os.getenv("DEPLOY_WATCHDOG_INTERVAL_SEC", 30)),
            stuck_task_seconds=float(os.getenv("DEPLOY_STUCK_TASK_SEC", 1800)),
            simulated=_env_bool("DEPLOY_SIMULATED", True),
            simulated_failure_rate=float(os.getenv("DEPLOY_SIM_FAILURE_RATE", 0.0)),
            simulated_step_delay=float(os.getenv("DEPLOY_SIM_STEP_DELAY_SEC", 0.0)),
            simulated_seed=int(os.getenv("DEPLOY_SIM_SEED", 0)),
        )


@dataclass(frozen=True)
class QuotaDefaults:
    """
    Defaults for the job-creation quota.

    Usage is counted per tenant+user key within a TTL window.
    """
    enabled: bool = True
    max_jobs_per_window: int = 100
    window_seconds: int = 3600

    @classmethod
    def from_env(cls) -> "QuotaDefaults":
        """Create from environment variables."""
        return cls(
            enabled=_env_bool("DEPLOY_QUOTA_ENABLED", True),
            max_jobs_per_window=int(os.getenv("DEPLOY_QUOTA_MAX_JOBS", 100)),
            window_seconds=int(os.getenv("DEPLOY_QUOTA_WINDOW_SEC", 3600)),
        )


@dataclass(frozen=True)
class DatabaseDefaults:
    """
    Defaults for persistence.

    DATABASE_URL wins over the individual POSTGRES_* variables.
    """
    storage: StorageBackend = StorageBackend.MEMORY
    schema: str = "deploy"
    pool_min_size: int = 2
    pool_max_size: int = 10
    ensure_schema: bool = True

    @classmethod
    def from_env(cls) -> "DatabaseDefaults":
        """Create from environment variables."""
        return cls(
            storage=StorageBackend(os.getenv("DEPLOY_STORAGE", "memory").lower()),
            schema=os.getenv("DEPLOY_DB_SCHEMA", "deploy"),
            pool_min_size=int(os.getenv("DB_POOL_MIN", 2)),
            pool_max_size=int(os.getenv("DB_POOL_MAX", 10)),
            ensure_schema=_env_bool("DEPLOY_ENSURE_SCHEMA", True),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    engine: EngineDefaults = field(default_factory=EngineDefaults)
    quota: QuotaDefaults = field(default_factory=QuotaDefaults)
    database: DatabaseDefaults = field(default_factory=DatabaseDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            engine=EngineDefaults.from_env(),
            quota=QuotaDefaults.from_env(),
            database=DatabaseDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StorageBackend",
    "EngineDefaults",
    "QuotaDefaults",
    "DatabaseDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
