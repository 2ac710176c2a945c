# ============================================================================
# DATABASE CONNECTION POOLS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Async PostgreSQL pool lifecycle
# PURPOSE: Open and close the query pool and the lock pool together
# CREATED: 17 OCT 2026
# ============================================================================
"""
Database Connection Pools

Wraps ConnectionProvider so the drain can open both pools in one
`async with` and always close them on the way out.

Usage:
    from repositories.database import DatabasePools

    async with DatabasePools(conninfo, retry) as pools:
        builds = BuildRepository(pools.pool)
        locks = LockService(pools.lock_pool)
"""

import logging
from typing import Optional

from psycopg import sql as psycopg_sql
from psycopg_pool import AsyncConnectionPool

from core.config import RetryDefaults
from infrastructure.postgresql import ConnectionProvider

logger = logging.getLogger(__name__)


class DatabasePools:
    """
    Context manager for pool lifecycle.

    Usage:
        async with DatabasePools(conninfo) as pools:
            async with pools.pool.connection() as conn:
                ...
    """

    def __init__(
        self,
        connection_string: str,
        retry: Optional[RetryDefaults] = None,
        pool_size: int = 4,
        open_timeout: float = 30.0,
    ):
        self.provider = ConnectionProvider(
            connection_string,
            retry=retry,
            pool_size=pool_size,
            open_timeout=open_timeout,
        )
        self.pool: Optional[AsyncConnectionPool] = None
        self.lock_pool: Optional[AsyncConnectionPool] = None

    async def __aenter__(self) -> "DatabasePools":
        try:
            await self.provider.verify()
            self.pool = await self.provider.open_pool()
            self.lock_pool = await self.provider.open_lock_pool()
        except BaseException:
            await self.provider.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.provider.close()
        self.pool = None
        self.lock_pool = None


# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

# Table identifiers: use with psycopg sql.SQL().format() for injection-safe queries
TABLE_BUILDS = psycopg_sql.Identifier("builds")
TABLE_BUILD_EVENTS = psycopg_sql.Identifier("build_events")
TABLE_TEAMS = psycopg_sql.Identifier("teams")
TABLE_PIPELINES = psycopg_sql.Identifier("pipelines")
TABLE_JOBS = psycopg_sql.Identifier("jobs")
