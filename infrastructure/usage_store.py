# ============================================================================
# USAGE STORE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Infrastructure - Keyed usage counters
# PURPOSE: Count job creations per tenant+user within TTL windows
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: UsageStore, InMemoryUsageStore, PostgresUsageStore, usage_key
# ============================================================================
"""
Usage Store

Fixed-window counters keyed by "tenant:user". A window opens on the first
increment after the previous one expired and lasts window_seconds.

The job service reserves a slot with try_increment before creating a job.
The check and the increment are one step, so concurrent creates for the
same key cannot overshoot max_jobs_per_window; a create that fails after
reserving gives the slot back with release.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)


def usage_key(tenant_id: Optional[str], owner: Optional[str]) -> str:
    """Counter key for a tenant/user pair."""
    return f"{tenant_id or 'default'}:{owner or 'anonymous'}"


class UsageStore(ABC):
    """Keyed counters with TTL windows."""

    @abstractmethod
    async def get(self, key: str) -> int:
        """Current count in the live window (0 when expired or absent)."""

    @abstractmethod
    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> int:
        """Add to the live window, opening a new one if needed. Returns the new count."""

    @abstractmethod
    async def try_increment(
        self, key: str, window_seconds: int, limit: int, amount: int = 1
    ) -> Optional[int]:
        """
        Increment only if the live window stays within limit.

        Returns the new count, or None when the increment would exceed limit
        (the counter is left unchanged).
        """

    @abstractmethod
    async def release(self, key: str, amount: int = 1) -> None:
        """Give back slots in the live window; never drops below zero."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        ...


class InMemoryUsageStore(UsageStore):
    """Process-local counters; clock is injectable for tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    def _live(self, key: str) -> Optional[Tuple[float, int]]:
        window = self._windows.get(key)
        if window is None:
            return None
        expires_at, count = window
        if self._clock() >= expires_at:
            del self._windows[key]
            return None
        return window

    async def get(self, key: str) -> int:
        window = self._live(key)
        return window[1] if window else 0

    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> int:
        window = self._live(key)
        if window is None:
            window = (self._clock() + window_seconds, 0)
        expires_at, count = window
        self._windows[key] = (expires_at, count + amount)
        return count + amount

    async def try_increment(
        self, key: str, window_seconds: int, limit: int, amount: int = 1
    ) -> Optional[int]:
        # No await between the read and the write
        window = self._live(key)
        count = window[1] if window else 0
        if count + amount > limit:
            return None
        expires_at = window[0] if window else self._clock() + window_seconds
        self._windows[key] = (expires_at, count + amount)
        return count + amount

    async def release(self, key: str, amount: int = 1) -> None:
        window = self._live(key)
        if window is not None:
            self._windows[key] = (window[0], max(window[1] - amount, 0))

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)


class PostgresUsageStore(UsageStore):
    """Counters in a shared table so every process sees the same window."""

    def __init__(self, pool: AsyncConnectionPool, table: sql.Identifier):
        self.pool = pool
        self.table = table

    async def get(self, key: str) -> int:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL(
                    "SELECT count FROM {} WHERE usage_key = %s AND expires_at > NOW()"
                ).format(self.table),
                (key,),
            )
            row = await result.fetchone()
        return row["count"] if row else 0

    async def increment(self, key: str, window_seconds: int, amount: int = 1) -> int:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {table} (usage_key, count, expires_at)
                VALUES (%(key)s, %(amount)s, NOW() + make_interval(secs => %(window)s))
                ON CONFLICT (usage_key) DO UPDATE SET
                    count = CASE WHEN {table}.expires_at > NOW()
                                 THEN {table}.count + EXCLUDED.count
                                 ELSE EXCLUDED.count END,
                    expires_at = CASE WHEN {table}.expires_at > NOW()
                                      THEN {table}.expires_at
                                      ELSE EXCLUDED.expires_at END
                RETURNING count
                """).format(table=self.table),
                {"key": key, "amount": amount, "window": window_seconds},
            )
            row = await result.fetchone()
        return row["count"]

    async def try_increment(
        self, key: str, window_seconds: int, limit: int, amount: int = 1
    ) -> Optional[int]:
        """
        Conditional upsert. The conflicting row is locked for the update, so
        the limit test and the increment see the same count. A filtered-out
        update returns no row.
        """
        if amount > limit:
            return None
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {table} (usage_key, count, expires_at)
                VALUES (%(key)s, %(amount)s, NOW() + make_interval(secs => %(window)s))
                ON CONFLICT (usage_key) DO UPDATE SET
                    count = CASE WHEN {table}.expires_at > NOW()
                                 THEN {table}.count + EXCLUDED.count
                                 ELSE EXCLUDED.count END,
                    expires_at = CASE WHEN {table}.expires_at > NOW()
                                      THEN {table}.expires_at
                                      ELSE EXCLUDED.expires_at END
                WHERE {table}.expires_at <= NOW()
                   OR {table}.count + EXCLUDED.count <= %(limit)s
                RETURNING count
                """).format(table=self.table),
                {"key": key, "amount": amount, "window": window_seconds, "limit": limit},
            )
            row = await result.fetchone()
        return row["count"] if row else None

    async def release(self, key: str, amount: int = 1) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL(
                    "UPDATE {} SET count = GREATEST(count - %s, 0) "
                    "WHERE usage_key = %s AND expires_at > NOW()"
                ).format(self.table),
                (amount, key),
            )

    async def reset(self, key: str) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("DELETE FROM {} WHERE usage_key = %s").format(self.table),
                (key,),
            )


__all__ = ["UsageStore", "InMemoryUsageStore", "PostgresUsageStore", "usage_key"]
