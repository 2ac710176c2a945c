# ============================================================================
# LOCK SERVICE TESTS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Tests - Advisory lock coordination
# PURPOSE: Verify try-lock semantics, in-process tracking, and hooks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Lock Service Tests

Covers:
1. Lock ids are stable signed int64 hashes of the name
2. A lock held by another session is reported busy (None)
3. A name held in this process is reported busy, not re-entered
4. Release runs exactly once and fires the release hook
5. The lock() context manager releases on error

Run with:
    pytest tests/test_locking.py -v
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from infrastructure.locking import Lock, LockService


# ============================================================================
# FAKES
# ============================================================================

class FakeAdvisoryLocks:
    """Server-side advisory lock table shared by several sessions."""

    def __init__(self):
        self.holders: Dict[int, str] = {}
        self.queries: List[str] = []

    def pool_for(self, session: str) -> "FakeLockPool":
        return FakeLockPool(self, session)


class FakeResult:
    def __init__(self, value: bool):
        self.value = value

    async def fetchone(self):
        return {"result": self.value}


class FakeLockConnection:
    def __init__(self, server: FakeAdvisoryLocks, session: str):
        self.server = server
        self.session = session

    async def execute(self, query, params):
        (lock_id,) = params
        self.server.queries.append(query)
        if "pg_try_advisory_lock" in query:
            holder = self.server.holders.get(lock_id)
            if holder is None or holder == self.session:
                self.server.holders[lock_id] = self.session
                return FakeResult(True)
            return FakeResult(False)
        if "pg_advisory_unlock" in query:
            if self.server.holders.get(lock_id) == self.session:
                del self.server.holders[lock_id]
                return FakeResult(True)
            return FakeResult(False)
        raise AssertionError(f"unexpected query {query}")


class FakeLockPool:
    def __init__(self, server: FakeAdvisoryLocks, session: str):
        self.conn = FakeLockConnection(server, session)

    @asynccontextmanager
    async def connection(self):
        yield self.conn


# ============================================================================
# TESTS
# ============================================================================

class TestLockIds:
    """Tests for lock naming and hashing."""

    def test_hash_is_stable_and_signed_int64(self):
        a = LockService._hash_to_lock_id("metricdrain:build-drain:1")
        b = LockService._hash_to_lock_id("metricdrain:build-drain:1")
        assert a == b
        assert -(2 ** 63) <= a < 2 ** 63

    def test_different_names_different_ids(self):
        assert (
            LockService._hash_to_lock_id("metricdrain:build-drain:1")
            != LockService._hash_to_lock_id("metricdrain:build-drain:2")
        )

    def test_build_drain_lock_name(self):
        assert LockService.build_drain_lock_name(42) == "metricdrain:build-drain:42"


class TestAcquireRelease:
    """Tests for acquire() and release()."""

    def test_acquire_and_release(self):
        server = FakeAdvisoryLocks()
        acquired, released = [], []
        service = LockService(
            server.pool_for("worker-a"),
            on_acquired=acquired.append,
            on_released=released.append,
        )

        async def run():
            lock = await service.acquire("build:1")
            assert isinstance(lock, Lock)
            assert service.held_count == 1
            await service.release(lock)
            assert service.held_count == 0

        asyncio.run(run())
        assert acquired == ["build:1"]
        assert released == ["build:1"]
        assert server.holders == {}

    def test_busy_in_other_session(self):
        server = FakeAdvisoryLocks()
        a = LockService(server.pool_for("worker-a"))
        b = LockService(server.pool_for("worker-b"))

        async def run():
            held = await a.acquire("build:1")
            assert held is not None
            assert await b.acquire("build:1") is None
            await a.release(held)
            assert await b.acquire("build:1") is not None

        asyncio.run(run())

    def test_same_name_in_process_is_busy(self):
        server = FakeAdvisoryLocks()
        service = LockService(server.pool_for("worker-a"))

        async def run():
            first = await service.acquire("build:1")
            second = await service.acquire("build:1")
            return first, second

        first, second = asyncio.run(run())
        assert first is not None
        assert second is None
        # The second attempt never reached the server
        assert len(server.queries) == 1

    def test_release_twice_is_noop(self):
        server = FakeAdvisoryLocks()
        released = []
        service = LockService(server.pool_for("worker-a"), on_released=released.append)

        async def run():
            lock = await service.acquire("build:1")
            await service.release(lock)
            await service.release(lock)

        asyncio.run(run())
        assert released == ["build:1"]

    def test_unlock_not_held_logs_and_skips_hook(self):
        server = FakeAdvisoryLocks()
        released = []
        service = LockService(server.pool_for("worker-a"), on_released=released.append)

        async def run():
            lock = await service.acquire("build:1")
            server.holders.clear()
            await service.release(lock)

        asyncio.run(run())
        assert released == []
        assert service.held_count == 0

    def test_tuple_rows_supported(self):
        result = MagicMock()

        async def fetchone():
            return (True,)

        result.fetchone = fetchone
        conn = MagicMock()

        async def execute(query, params):
            return result

        conn.execute = execute

        @asynccontextmanager
        async def connection():
            yield conn

        pool = MagicMock()
        pool.connection = connection

        lock = asyncio.run(LockService(pool).acquire("build:9"))
        assert lock is not None


class TestLockContext:
    """Tests for the lock() context manager."""

    def test_yields_none_when_busy(self):
        server = FakeAdvisoryLocks()
        a = LockService(server.pool_for("worker-a"))
        b = LockService(server.pool_for("worker-b"))

        async def run():
            async with a.lock("build:1") as held:
                assert held is not None
                async with b.lock("build:1") as other:
                    assert other is None
            assert server.holders == {}

        asyncio.run(run())

    def test_releases_on_error(self):
        server = FakeAdvisoryLocks()
        service = LockService(server.pool_for("worker-a"))

        async def run():
            async with service.lock("build:1"):
                raise ValueError("drain failed")

        with pytest.raises(ValueError):
            asyncio.run(run())
        assert server.holders == {}
        assert service.held_count == 0
