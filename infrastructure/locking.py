# ============================================================================
# COORDINATION LOCK SERVICE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Named PostgreSQL advisory locks across worker instances
# CREATED: 17 OCT 2026
# ============================================================================
"""
Coordination Lock Service

Named, mutually-exclusive locks backed by PostgreSQL session-level
advisory locks, taken on the dedicated single-connection lock pool.

Advisory locks are:
- Fast (in-memory, no disk I/O)
- Auto-release on disconnect (crash-safe)
- Support non-blocking try_lock semantics
- 64-bit key space

Session locks are re-entrant for the session that holds them, and every
lock in this process shares one session. Names held in-process are
therefore tracked locally so a second acquire of the same name reports
busy instead of silently stacking.

Usage:
    from infrastructure.locking import LockService

    lock_service = LockService(lock_pool)

    async with lock_service.lock(f"build-drain:{build_id}") as lock:
        if lock is None:
            return  # busy, another worker has it
        await drain(build)
"""

import hashlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional, Set

from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

LockCallback = Callable[[str], None]


@dataclass(frozen=True)
class Lock:
    """Handle for a held advisory lock."""
    name: str
    lock_id: int


class LockService:
    """
    PostgreSQL-based named locks.

    acquire() returns None when the lock is busy; that is an outcome, not
    an error. Database failures raise.
    """

    BUILD_DRAIN_PREFIX = "metricdrain:build-drain:"

    def __init__(
        self,
        pool: AsyncConnectionPool,
        on_acquired: Optional[LockCallback] = None,
        on_released: Optional[LockCallback] = None,
    ):
        """
        Initialize lock service.

        Args:
            pool: Dedicated lock pool (size 1)
            on_acquired: Called with the lock name after each acquisition
            on_released: Called with the lock name after each release
        """
        self.pool = pool
        self.on_acquired = on_acquired
        self.on_released = on_released
        self._held: Set[int] = set()

    @staticmethod
    def _hash_to_lock_id(key: str) -> int:
        """
        Convert string key to int64 for PostgreSQL advisory lock.

        Args:
            key: String key to hash

        Returns:
            Signed int64 suitable for pg_advisory_lock
        """
        # Use first 8 bytes of SHA256, interpret as signed int64
        h = hashlib.sha256(key.encode()).digest()[:8]
        return int.from_bytes(h, byteorder='big', signed=True)

    @classmethod
    def build_drain_lock_name(cls, build_id: int) -> str:
        return f"{cls.BUILD_DRAIN_PREFIX}{build_id}"

    async def _query_bool(self, query: str, lock_id: int) -> bool:
        async with self.pool.connection() as conn:
            result = await conn.execute(query, (lock_id,))
            row = await result.fetchone()
        # Handle both dict_row and tuple row factories
        if not row:
            return False
        return bool(row["result"] if hasattr(row, "keys") else row[0])

    async def acquire(self, name: str) -> Optional[Lock]:
        """
        Try to acquire a named lock without blocking.

        Args:
            name: Lock name

        Returns:
            Lock handle, or None if the lock is busy
        """
        lock_id = self._hash_to_lock_id(name)

        if lock_id in self._held:
            logger.debug(f"Lock {name} already held in this process")
            return None

        acquired = await self._query_bool(
            "SELECT pg_try_advisory_lock(%s) AS result",
            lock_id,
        )

        if not acquired:
            logger.debug(f"Lock {name} held by another session")
            return None

        self._held.add(lock_id)
        logger.debug(f"Acquired lock {name} (lock_id={lock_id})")
        if self.on_acquired:
            self.on_acquired(name)
        return Lock(name=name, lock_id=lock_id)

    async def release(self, lock: Lock) -> None:
        """
        Release a held lock. Releasing a lock that is not held is a no-op.
        """
        if lock.lock_id not in self._held:
            return

        released = await self._query_bool(
            "SELECT pg_advisory_unlock(%s) AS result",
            lock.lock_id,
        )
        self._held.discard(lock.lock_id)

        if not released:
            logger.warning(f"Lock {lock.name} was not held by this session at release")
            return

        logger.debug(f"Released lock {lock.name} (lock_id={lock.lock_id})")
        if self.on_released:
            self.on_released(lock.name)

    @asynccontextmanager
    async def lock(self, name: str):
        """
        Context manager for a named lock.

        Yields:
            Lock if acquired, None if busy

        Release errors are logged and do not replace the body's outcome.
        """
        held = await self.acquire(name)
        try:
            yield held
        finally:
            if held is not None:
                try:
                    await self.release(held)
                except Exception as e:
                    logger.error(f"Error releasing lock {name}: {e}")

    @property
    def held_count(self) -> int:
        return len(self._held)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["LockService", "Lock"]
