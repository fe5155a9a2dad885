# ============================================================================
# SCHEMA BOOTSTRAP
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - DDL for the deployment tables
# PURPOSE: Idempotent CREATE statements built with psycopg.sql
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: generate_ddl, ensure_schema
# DEPENDENCIES: psycopg
# ============================================================================
"""
Schema Bootstrap

All statements are IF NOT EXISTS, so ensure_schema is safe on every start.
Identifiers are composed with psycopg.sql, never string concatenation.
"""

import logging
from typing import List

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from .database import SCHEMA

logger = logging.getLogger(__name__)


_JOBS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    job_id          SERIAL PRIMARY KEY,
    name            VARCHAR(256) NOT NULL,
    description     TEXT,
    targets         JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    target_os       VARCHAR(64) NOT NULL,
    max_retries     INTEGER NOT NULL DEFAULT 3,
    status          VARCHAR(32) NOT NULL DEFAULT 'pending',
    progress        JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    cancel_reason   TEXT,
    owner           VARCHAR(128),
    tenant_id       VARCHAR(128),
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at      TIMESTAMPTZ,
    completed_at    TIMESTAMPTZ,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    version         INTEGER NOT NULL DEFAULT 1
)
"""

_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    task_id             SERIAL PRIMARY KEY,
    job_id              INTEGER NOT NULL REFERENCES {jobs}(job_id) ON DELETE CASCADE,
    target_host         VARCHAR(255) NOT NULL,
    target_ip           VARCHAR(64),
    target_os           VARCHAR(64) NOT NULL,
    status              VARCHAR(32) NOT NULL DEFAULT 'pending',
    current_step        VARCHAR(64),
    attempt_count       INTEGER NOT NULL DEFAULT 0,
    max_retries         INTEGER NOT NULL DEFAULT 3,
    agent_id            VARCHAR(128),
    installed_version   VARCHAR(64),
    installation_path   VARCHAR(512),
    service_status      VARCHAR(32),
    error_message       TEXT,
    error_code          VARCHAR(64),
    error_details       JSONB,
    deployment_logs     JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at          TIMESTAMPTZ,
    completed_at        TIMESTAMPTZ,
    last_contact_at     TIMESTAMPTZ,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    generation          INTEGER NOT NULL DEFAULT 0,
    repair_active       BOOLEAN NOT NULL DEFAULT FALSE,
    version             INTEGER NOT NULL DEFAULT 1
)
"""

_ACTIVITY_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    activity_id     SERIAL PRIMARY KEY,
    entity_type     VARCHAR(32) NOT NULL,
    entity_id       INTEGER NOT NULL,
    action          VARCHAR(64) NOT NULL,
    metadata        JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

_USAGE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    usage_key       VARCHAR(300) PRIMARY KEY,
    count           INTEGER NOT NULL DEFAULT 0,
    expires_at      TIMESTAMPTZ NOT NULL
)
"""


def _index(table: str, columns: List[str]) -> sql.Composed:
    name = f"idx_{table}_{'_'.join(columns)}"
    return sql.SQL("CREATE INDEX IF NOT EXISTS {name} ON {schema}.{table} ({columns})").format(
        name=sql.Identifier(name),
        schema=sql.Identifier(SCHEMA),
        table=sql.Identifier(table),
        columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
    )


def generate_ddl() -> List[sql.Composed]:
    """Statements in dependency order."""
    jobs = sql.Identifier(SCHEMA, "deployment_jobs")
    tasks = sql.Identifier(SCHEMA, "deployment_tasks")
    activity = sql.Identifier(SCHEMA, "activity_log")
    usage = sql.Identifier(SCHEMA, "usage_counters")

    return [
        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),
        sql.SQL(_JOBS_DDL).format(table=jobs),
        sql.SQL(_TASKS_DDL).format(table=tasks, jobs=jobs),
        sql.SQL(
            "ALTER TABLE {} ADD COLUMN IF NOT EXISTS repair_active BOOLEAN NOT NULL DEFAULT FALSE"
        ).format(tasks),
        sql.SQL(_ACTIVITY_DDL).format(table=activity),
        sql.SQL(_USAGE_DDL).format(table=usage),
        _index("deployment_jobs", ["status"]),
        _index("deployment_jobs", ["owner"]),
        _index("deployment_tasks", ["job_id"]),
        _index("deployment_tasks", ["status"]),
        _index("activity_log", ["entity_type", "entity_id"]),
    ]


async def ensure_schema(pool: AsyncConnectionPool) -> int:
    """
    Create schema, tables and indexes if missing.

    Returns:
        Number of statements executed
    """
    statements = generate_ddl()
    async with pool.connection() as conn:
        async with conn.transaction():
            for stmt in statements:
                await conn.execute(stmt)
    logger.info(f"Schema {SCHEMA} ensured ({len(statements)} statements)")
    return len(statements)


__all__ = ["generate_ddl", "ensure_schema"]
