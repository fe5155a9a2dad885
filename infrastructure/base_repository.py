# ============================================================================
# BASE REPOSITORY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Infrastructure - Shared psycopg query helpers
# PURPOSE: Pooled query execution with uniform error wrapping for repositories
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Base Repository

Every PostgreSQL repository runs its statements through the helpers here:

    row  = await self._fetch_one(query, params, "job lookup", job_id)
    rows = await self._fetch_all(query, params, "task list", job_id)
    n    = await self._execute(query, params, "job update", job_id)

Inside a held job lock the helpers run on the lock's connection (see
bind_connection), so a lock holder never waits on the pool.

Rows come back as dicts. Driver errors surface as RepositoryError, a
DeploymentError with status 503, so the API reports storage outages
instead of leaking psycopg exceptions.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Optional, Tuple

from psycopg import AsyncConnection, Error as PsycopgError
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from core.errors import DeploymentError

Params = Any

_bound: ContextVar[Optional[Tuple[AsyncConnectionPool, AsyncConnection, Optional[asyncio.Task]]]] = (
    ContextVar("deploy_bound_connection", default=None)
)


@contextmanager
def bind_connection(pool: AsyncConnectionPool, conn: AsyncConnection):
    """
    Route repository queries on pool through conn for the current asyncio task.

    Used by the job lock: the body of a held lock reuses the lock's
    connection instead of checking out a second one. Tasks spawned inside
    the block inherit the context but not the binding.
    """
    token = _bound.set((pool, conn, asyncio.current_task()))
    try:
        yield conn
    finally:
        _bound.reset(token)


def bound_connection(pool: AsyncConnectionPool) -> Optional[AsyncConnection]:
    bound = _bound.get()
    if bound is None:
        return None
    bound_pool, conn, owner = bound
    if bound_pool is not pool or owner is not asyncio.current_task():
        return None
    return conn


class RepositoryError(DeploymentError):
    """Storage operation failed."""

    status_code = 503

    def __init__(self, message: str, operation: Optional[str] = None, entity_id: Any = None):
        self.operation = operation
        super().__init__(message, entity_id)


class AsyncBaseRepository:
    """Pool-backed repository base."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool
        self.logger = logging.getLogger(self.__class__.__name__)

    @asynccontextmanager
    async def _connection(self):
        """The connection bound by a held job lock, else one from the pool."""
        conn = bound_connection(self.pool)
        if conn is not None:
            yield conn
            return
        async with self.pool.connection() as conn:
            yield conn

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[Any] = None):
        try:
            yield
        except (PsycopgError, PoolTimeout) as e:
            target = f" for {entity_id}" if entity_id is not None else ""
            message = f"{operation} failed{target}: {e}"
            self.logger.error(message)
            raise RepositoryError(message, operation=operation, entity_id=entity_id) from e

    async def _fetch_one(
        self,
        query,
        params: Params = None,
        operation: str = "query",
        entity_id: Any = None,
    ) -> Optional[Dict[str, Any]]:
        with self._error_context(operation, entity_id):
            async with self._connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    return await cur.fetchone()

    async def _fetch_all(
        self,
        query,
        params: Params = None,
        operation: str = "query",
        entity_id: Any = None,
    ) -> List[Dict[str, Any]]:
        with self._error_context(operation, entity_id):
            async with self._connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()

    async def _execute(
        self,
        query,
        params: Params = None,
        operation: str = "statement",
        entity_id: Any = None,
    ) -> int:
        """Run a write. Returns the affected row count."""
        with self._error_context(operation, entity_id):
            async with self._connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return cur.rowcount

    def _log_conflict(self, entity: str, entity_id: Any, expected_version: int) -> None:
        self.logger.debug(
            f"{entity} {entity_id} not updated: version {expected_version} is stale"
        )


__all__ = ["AsyncBaseRepository", "RepositoryError", "bind_connection", "bound_connection"]
