# ============================================================================
# JOB LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Per-job mutual exclusion for job writers; single watchdog leader
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Job Locking Service

Two locks, two backends.

    job_lock(job_id)      serializes everything that writes a job row:
                          aggregator recompute and the controller commands
    leader lock           held by at most one process; that process runs
                          the watchdog (stuck-task timeouts, requeue)

InProcessLockService keeps an asyncio.Lock per job and a flag for the
leader. LockService uses PostgreSQL advisory locks in the two-key form
(namespace, id), so job ids map onto lock keys without hashing:

    leader    pg_try_advisory_lock(LEADER_NS, 0)     session, own connection
    job N     pg_advisory_lock(JOB_NS, N)            session, pooled, autocommit;
                                                     the body queries on it

Row versions on the tables remain the last line of defense; these locks
only cut down on conflicts.

Usage:
    async with locks.job_lock(job_id):
        await aggregator._recompute_locked(job_id)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Dict

from psycopg import Error as PsycopgError
from psycopg_pool import AsyncConnectionPool

from infrastructure.base_repository import bind_connection

logger = logging.getLogger(__name__)


class JobLockService(ABC):
    """Per-job mutex plus a process-wide leader lock."""

    @abstractmethod
    def job_lock(self, job_id: int, blocking: bool = True):
        """
        Async context manager yielding True while the lock is held.

        With blocking=False it yields False at once if the job is locked
        elsewhere; the body must then skip its write.
        """

    def forget(self, job_id: int) -> None:
        """Drop per-job state of a deleted job."""

    @abstractmethod
    async def acquire_leader_lock(self) -> bool:
        """Non-blocking. True if this process is now the leader."""

    @abstractmethod
    async def release_leader_lock(self) -> None:
        ...

    @property
    @abstractmethod
    def holds_leader_lock(self) -> bool:
        ...


class InProcessLockService(JobLockService):
    """asyncio.Lock per job id; leader is whoever asks first."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._leader_taken = False

    @asynccontextmanager
    async def job_lock(self, job_id: int, blocking: bool = True):
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        if lock.locked() and not blocking:
            yield False
            return
        async with lock:
            yield True

    def forget(self, job_id: int) -> None:
        lock = self._locks.get(job_id)
        if lock is not None and not lock.locked():
            self._locks.pop(job_id, None)

    async def acquire_leader_lock(self) -> bool:
        if self._leader_taken:
            return False
        self._leader_taken = True
        return True

    async def release_leader_lock(self) -> None:
        self._leader_taken = False

    @property
    def holds_leader_lock(self) -> bool:
        return self._leader_taken


class LockService(JobLockService):
    """PostgreSQL advisory locks shared by every process on one database."""

    LEADER_NS = 0x4450  # "DP"
    JOB_NS = 0x444A     # "DJ"

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool
        self._leader_conn = None

    @staticmethod
    def _job_key(job_id: int) -> int:
        # objid is int4; wrapping only ever serializes two unrelated jobs
        return job_id & 0x7FFFFFFF

    # =========================================================================
    # LEADER
    # =========================================================================

    async def acquire_leader_lock(self) -> bool:
        """
        Try the session-level leader lock on a connection taken out of the
        pool for as long as leadership lasts. The lock dies with that
        connection, so a crashed leader frees it for a standby.
        """
        if self._leader_conn is not None:
            return True

        conn = await self.pool.getconn()
        try:
            await conn.set_autocommit(True)
            cur = await conn.execute(
                "SELECT pg_try_advisory_lock(%s, 0)", (self.LEADER_NS,)
            )
            (acquired,) = await cur.fetchone()
        except PsycopgError as e:
            logger.error(f"Leader lock query failed: {e}")
            await self.pool.putconn(conn)
            return False

        if not acquired:
            await self.pool.putconn(conn)
            logger.debug("Leader lock held by another process")
            return False

        self._leader_conn = conn
        logger.info("Leader lock acquired")
        return True

    async def release_leader_lock(self) -> None:
        conn, self._leader_conn = self._leader_conn, None
        if conn is None:
            return
        try:
            await conn.execute("SELECT pg_advisory_unlock(%s, 0)", (self.LEADER_NS,))
            logger.info("Leader lock released")
        except PsycopgError as e:
            # Returning the connection closes the session if it is broken
            logger.warning(f"Leader unlock failed: {e}")
        finally:
            await self.pool.putconn(conn)

    @property
    def holds_leader_lock(self) -> bool:
        return self._leader_conn is not None

    # =========================================================================
    # JOB
    # =========================================================================

    @asynccontextmanager
    async def job_lock(self, job_id: int, blocking: bool = True):
        """
        Session-level lock on an autocommit connection.

        The body's repository queries run on the same connection, so a
        holder needs no second checkout, and each write commits as it is
        made. The lock is released explicitly; a connection whose unlock
        fails is closed so the server drops the lock with the session.
        """
        key = (self.JOB_NS, self._job_key(job_id))

        async with self.pool.connection() as conn:
            await conn.set_autocommit(True)
            try:
                if blocking:
                    await conn.execute("SELECT pg_advisory_lock(%s, %s)", key)
                    acquired = True
                else:
                    cur = await conn.execute("SELECT pg_try_advisory_lock(%s, %s)", key)
                    (acquired,) = await cur.fetchone()

                if not acquired:
                    yield False
                    return

                try:
                    with bind_connection(self.pool, conn):
                        yield True
                finally:
                    await self._unlock(conn, key, job_id)
            finally:
                if not conn.closed:
                    await conn.set_autocommit(False)

    async def _unlock(self, conn, key, job_id: int) -> None:
        try:
            await conn.execute("SELECT pg_advisory_unlock(%s, %s)", key)
        except PsycopgError as e:
            logger.warning(f"Unlock of job {job_id} failed, closing connection: {e}")
            await conn.close()


__all__ = ["JobLockService", "InProcessLockService", "LockService"]
