# ============================================================================
# POSTGRESQL CONNECTION INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Infrastructure - Resilient PostgreSQL connection handling
# PURPOSE: Connection pools that retry transient connection failures
# CREATED: 17 OCT 2026
# ============================================================================
"""
PostgreSQL Connection Infrastructure

Provides database connectivity for the drain:
- Connections that retry transient failures (too many connections,
  server starting up, broken sockets) a bounded number of times
- A general pool for build queries and event streaming
- A dedicated single-connection pool for advisory lock traffic

The lock pool never carries query or streaming traffic. Session-level
advisory locks live on its one connection, so that connection is kept
for the life of the process.

Usage:
    provider = ConnectionProvider(settings.postgres.connection_string())
    await provider.verify()
    pool = await provider.open_pool()
    lock_pool = await provider.open_lock_pool()
    ...
    await provider.close()
"""

import asyncio
import logging
from typing import ClassVar, List, Optional

import psycopg
from psycopg import AsyncConnection
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg_pool import AsyncConnectionPool

from core.config import RetryDefaults

logger = logging.getLogger(__name__)

# SQLSTATEs worth retrying at connect time
TRANSIENT_SQLSTATES = frozenset({
    "53300",  # too_many_connections
    "57P03",  # cannot_connect_now (starting up / shutting down)
})

# libpq reports most connect failures without a SQLSTATE
TRANSIENT_MESSAGES = (
    "too many connections",
    "connection refused",
    "could not connect",
    "the database system is starting up",
    "the database system is shutting down",
    "server closed the connection unexpectedly",
    "connection timeout expired",
)

# Lock connection lifetime: effectively never recycled
UNBOUNDED_LIFETIME = 10 * 365 * 24 * 3600.0


def is_transient_error(error: BaseException) -> bool:
    """
    Check whether a connection error is worth retrying.

    Auth failures, unknown databases and the like are permanent.
    """
    if not isinstance(error, psycopg.OperationalError):
        return False

    sqlstate = getattr(error, "sqlstate", None)
    if sqlstate:
        return sqlstate in TRANSIENT_SQLSTATES or sqlstate.startswith("08")

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


def mask_conninfo(conninfo: str) -> str:
    """Connection string with the password hidden, for logs."""
    try:
        params = conninfo_to_dict(conninfo)
    except psycopg.ProgrammingError:
        return "<unparseable conninfo>"
    if params.get("password"):
        params["password"] = "***"
    return make_conninfo(**params)


class RetryingAsyncConnection(AsyncConnection):
    """
    AsyncConnection whose connect() retries transient failures.

    Pools build connections through connect(), so every pooled
    connection gets the same behavior.
    """

    retry_policy: ClassVar[RetryDefaults] = RetryDefaults()

    @classmethod
    async def connect(cls, conninfo: str = "", **kwargs):
        policy = cls.retry_policy
        for attempt in range(policy.max_attempts):
            try:
                return await super().connect(conninfo, **kwargs)
            except psycopg.OperationalError as e:
                if not is_transient_error(e):
                    logger.error(f"PostgreSQL connection failed (permanent): {e}")
                    raise
                if attempt == policy.max_attempts - 1:
                    logger.error(
                        f"PostgreSQL connection failed after {policy.max_attempts} attempts: {e}"
                    )
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Transient connection error on attempt {attempt + 1}/{policy.max_attempts}, "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    @classmethod
    def with_policy(cls, policy: RetryDefaults) -> type:
        """Subclass bound to a specific retry policy."""
        return type(cls.__name__, (cls,), {"retry_policy": policy})


class ConnectionProvider:
    """
    Opens the drain's connection pools.

    Both pools share one connection string and one retry policy; they
    differ only in sizing. Failing to open either pool raises, which is
    fatal to the run.
    """

    def __init__(
        self,
        conninfo: str,
        retry: Optional[RetryDefaults] = None,
        pool_size: int = 4,
        open_timeout: float = 30.0,
    ):
        """
        Args:
            conninfo: libpq connection string
            retry: Connect retry policy
            pool_size: Max connections in the general pool
            open_timeout: Seconds to wait for the first connection
        """
        self.conninfo = conninfo
        self.retry = retry or RetryDefaults()
        self.pool_size = pool_size
        self.open_timeout = open_timeout
        self.connection_class = RetryingAsyncConnection.with_policy(self.retry)
        self._pools: List[AsyncConnectionPool] = []

    @property
    def safe_conninfo(self) -> str:
        return mask_conninfo(self.conninfo)

    async def verify(self) -> None:
        """
        Open and close one connection through the retry policy.

        Pools reconnect in the background and only report a timeout, so a
        permanent error (bad password, unknown database) is raised here
        as itself before any pool is opened.
        """
        conn = await self.connection_class.connect(self.conninfo)
        await conn.close()
        logger.info(f"PostgreSQL reachable: {self.safe_conninfo}")

    async def _open(self, pool: AsyncConnectionPool) -> AsyncConnectionPool:
        self._pools.append(pool)
        await pool.open(wait=True, timeout=self.open_timeout)
        return pool

    async def open_pool(self) -> AsyncConnectionPool:
        """
        Open the general pool used for build queries and event streams.

        Broken connections are detected on checkout and replaced.
        """
        logger.info(f"Opening connection pool: {self.safe_conninfo}")
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            min_size=1,
            max_size=self.pool_size,
            connection_class=self.connection_class,
            check=AsyncConnectionPool.check_connection,
            name="metricdrain",
            open=False,
        )
        await self._open(pool)
        logger.info(f"Connection pool opened (max={self.pool_size})")
        return pool

    async def open_lock_pool(self) -> AsyncConnectionPool:
        """
        Open the dedicated lock pool.

        Exactly one connection, open and idle, never recycled by age:
        session-level advisory locks are tied to it.
        """
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            min_size=1,
            max_size=1,
            max_lifetime=UNBOUNDED_LIFETIME,
            connection_class=self.connection_class,
            name="metricdrain-locks",
            open=False,
        )
        await self._open(pool)
        logger.info("Lock connection pool opened (size=1)")
        return pool

    async def close(self) -> None:
        """Close every pool this provider opened."""
        while self._pools:
            pool = self._pools.pop()
            try:
                await pool.close()
            except Exception as e:
                logger.warning(f"Error closing pool {pool.name}: {e}")
        logger.info("Connection pools closed")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ConnectionProvider",
    "RetryingAsyncConnection",
    "is_transient_error",
    "mask_conninfo",
    "TRANSIENT_SQLSTATES",
    "UNBOUNDED_LIFETIME",
]
