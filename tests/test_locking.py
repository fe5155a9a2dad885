# ============================================================================
# LOCKING TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Job lock connection handling
# PURPOSE: Verify lock holders query on the lock's connection, not a second checkout
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Locking Tests

LockService runs against a recording fake of the psycopg pool, so the
statements issued and the number of checkouts can be asserted without a
database.

Run with:
    pytest tests/test_locking.py -v
"""

import asyncio
from contextlib import asynccontextmanager

import pytest
from psycopg import OperationalError

from infrastructure.base_repository import AsyncBaseRepository
from infrastructure.locking import InProcessLockService, LockService


class FakeCursor:
    def __init__(self, conn, row=None):
        self.conn = conn
        self.row = row

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query, params=None):
        self.conn.record(query)

    async def fetchone(self):
        return self.row

    async def fetchall(self):
        return [self.row]


class FakeConnection:
    def __init__(self, name, fail_unlock=False):
        self.name = name
        self.fail_unlock = fail_unlock
        self.autocommit = False
        self.closed = False
        self.statements = []

    def record(self, query):
        self.statements.append(str(query))

    async def set_autocommit(self, value):
        self.autocommit = value

    async def execute(self, query, params=None):
        self.record(query)
        if self.fail_unlock and "unlock" in query:
            raise OperationalError("server closed the connection unexpectedly")
        return FakeCursor(self, row=(True,))

    def cursor(self, row_factory=None):
        return FakeCursor(self, row={"ok": 1, "conn": self.name})

    async def close(self):
        self.closed = True


class FakePool:
    """Hands out a fresh FakeConnection per checkout and keeps them all."""

    def __init__(self, fail_unlock=False):
        self.fail_unlock = fail_unlock
        self.handed_out = []

    @asynccontextmanager
    async def connection(self):
        conn = FakeConnection(f"conn-{len(self.handed_out) + 1}", self.fail_unlock)
        self.handed_out.append(conn)
        yield conn


class LookupRepository(AsyncBaseRepository):
    async def lookup(self):
        return await self._fetch_one("SELECT ok", None, "lookup")


class TestLockService:

    def test_holder_queries_on_lock_connection(self):
        async def scenario():
            pool = FakePool()
            locks = LockService(pool)
            repo = LookupRepository(pool)
            async with locks.job_lock(7) as held:
                row = await repo.lookup()
            return held, row, pool.handed_out

        held, row, handed_out = asyncio.run(scenario())
        assert held is True
        assert len(handed_out) == 1
        assert row["conn"] == "conn-1"
        conn = handed_out[0]
        assert conn.statements == [
            "SELECT pg_advisory_lock(%s, %s)",
            "SELECT ok",
            "SELECT pg_advisory_unlock(%s, %s)",
        ]
        assert conn.autocommit is False

    def test_task_spawned_inside_lock_checks_out_its_own(self):
        async def scenario():
            pool = FakePool()
            locks = LockService(pool)
            repo = LookupRepository(pool)
            async with locks.job_lock(7):
                row = await asyncio.create_task(repo.lookup())
            after = await repo.lookup()
            return row, after, pool.handed_out

        row, after, handed_out = asyncio.run(scenario())
        assert row["conn"] == "conn-2"
        assert after["conn"] == "conn-3"
        assert handed_out[0].statements[1:] == ["SELECT pg_advisory_unlock(%s, %s)"]

    def test_failed_unlock_closes_connection(self):
        async def scenario():
            pool = FakePool(fail_unlock=True)
            async with LockService(pool).job_lock(7):
                pass
            return pool.handed_out[0]

        conn = asyncio.run(scenario())
        assert conn.closed is True

    def test_try_lock_reports_acquired(self):
        async def scenario():
            pool = FakePool()
            async with LockService(pool).job_lock(7, blocking=False) as held:
                return held, list(pool.handed_out[0].statements)

        held, statements = asyncio.run(scenario())
        assert held is True
        assert statements == ["SELECT pg_try_advisory_lock(%s, %s)"]

    def test_job_key_fits_int4(self):
        assert LockService._job_key(2**40 + 5) == 5
        assert LockService._job_key(7) == 7


class TestInProcessLockService:

    def test_non_blocking_yields_false_while_held(self):
        async def scenario():
            locks = InProcessLockService()
            async with locks.job_lock(1):
                async with locks.job_lock(1, blocking=False) as inner:
                    nested = inner
            async with locks.job_lock(1, blocking=False) as free:
                return nested, free

        assert asyncio.run(scenario()) == (False, True)

    def test_holders_are_serialized(self):
        async def scenario():
            locks = InProcessLockService()
            order = []

            async def hold(name):
                async with locks.job_lock(1):
                    order.append(f"{name}-in")
                    await asyncio.sleep(0)
                    order.append(f"{name}-out")

            await asyncio.gather(hold("a"), hold("b"))
            return order

        assert asyncio.run(scenario()) == ["a-in", "a-out", "b-in", "b-out"]

    def test_leader_is_exclusive(self):
        async def scenario():
            locks = InProcessLockService()
            first = await locks.acquire_leader_lock()
            second = await locks.acquire_leader_lock()
            await locks.release_leader_lock()
            return first, second, locks.holds_leader_lock

        assert asyncio.run(scenario()) == (True, False, False)


@pytest.mark.parametrize("job_id", [1, 0x7FFFFFFF])
def test_job_key_is_identity_in_range(job_id):
    assert LockService._job_key(job_id) == job_id
