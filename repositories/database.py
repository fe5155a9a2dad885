# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Open and close the process-wide psycopg pool; table identifiers
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Database Connection Pool

One AsyncConnectionPool per process, opened by the application lifespan
when DEPLOY_STORAGE=postgres and shared by the repositories, the advisory
lock service and the usage store.

Connection string: DATABASE_URL, else assembled from POSTGRES_HOST,
POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD and
POSTGRES_SSLMODE.
"""

import logging
import os
from typing import Optional

from psycopg import sql as psycopg_sql
from psycopg_pool import AsyncConnectionPool

from core.config import DatabaseDefaults

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None


def connection_string_from_env() -> str:
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def _redacted(conninfo: str) -> str:
    """Host part only, for logs."""
    return conninfo.rsplit("@", 1)[-1]


async def init_pool(
    settings: Optional[DatabaseDefaults] = None,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """Open the process-wide pool, health-checking connections on checkout."""
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    settings = settings or DatabaseDefaults()
    conninfo = connection_string or connection_string_from_env()
    logger.info(
        f"Opening connection pool to {_redacted(conninfo)} "
        f"(min={settings.pool_min_size}, max={settings.pool_max_size})"
    )

    pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        check=AsyncConnectionPool.check_connection,
        name="deploy",
        open=False,
    )
    await pool.open(wait=True)
    _pool = pool
    return _pool


async def close_pool() -> None:
    global _pool

    if _pool is not None:
        pool, _pool = _pool, None
        await pool.close()
        logger.info("Connection pool closed")


# ============================================================================
# TABLES
# ============================================================================

SCHEMA = os.environ.get("DEPLOY_DB_SCHEMA", "deploy")

# Compose with sql.SQL(...).format(); never interpolate into query strings
TABLE_JOBS = psycopg_sql.Identifier(SCHEMA, "deployment_jobs")
TABLE_TASKS = psycopg_sql.Identifier(SCHEMA, "deployment_tasks")
TABLE_ACTIVITY = psycopg_sql.Identifier(SCHEMA, "activity_log")
TABLE_USAGE = psycopg_sql.Identifier(SCHEMA, "usage_counters")
