# ============================================================================
# BUILD REPOSITORY
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Build selection and drained-flag updates
# PURPOSE: Database access for the builds table
# CREATED: 17 OCT 2026
# ============================================================================
"""
Build Repository

The build store boundary the drain needs:
- get_drainable_builds(): finished builds with drained = false
- events(build, from_ordinal): an event stream for one build
- is_drained(build): current flag, re-read after claiming a build
- set_drained(build, drained): idempotent, durable, one build at a time
"""

import logging
from typing import List

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.contracts import BuildStatus
from core.models import Build
from .database import TABLE_BUILDS, TABLE_TEAMS, TABLE_PIPELINES, TABLE_JOBS
from .event_repo import BuildEventStream, EventRepository, DEFAULT_PAGE_SIZE

logger = logging.getLogger(__name__)


class BuildRepository:
    """Repository for Build entities."""

    def __init__(self, pool: AsyncConnectionPool, page_size: int = DEFAULT_PAGE_SIZE):
        self.pool = pool
        self._events = EventRepository(pool, page_size=page_size)

    async def get_drainable_builds(self) -> List[Build]:
        """
        Get every finished build that has not been drained.

        Evaluated once; builds finishing after this call are picked up
        by the next run.

        Returns:
            Builds ordered by id (oldest first)
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT b.id, b.name, b.status, b.public_plan, b.drained,
                       t.name AS team_name,
                       p.name AS pipeline_name,
                       j.name AS job_name
                FROM {} b
                JOIN {} t ON t.id = b.team_id
                LEFT JOIN {} p ON p.id = b.pipeline_id
                LEFT JOIN {} j ON j.id = b.job_id
                WHERE b.completed = true
                  AND b.drained = false
                ORDER BY b.id ASC
                """).format(TABLE_BUILDS, TABLE_TEAMS, TABLE_PIPELINES, TABLE_JOBS),
            )
            rows = await result.fetchall()

        builds = [self._row_to_build(row) for row in rows]
        logger.info(f"Found {len(builds)} drainable builds")
        return builds

    async def events(self, build: Build, from_ordinal: int = 0) -> BuildEventStream:
        """Open an event stream for a build. The caller must close it."""
        return await self._events.open_stream(build.build_id, from_ordinal)

    async def is_drained(self, build: Build) -> bool:
        """
        Re-read the drained flag from the store.

        Selection is a snapshot; another worker may have drained the build
        since. Checked after the per-build claim is taken.

        Raises:
            LookupError: the build no longer exists
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("SELECT drained FROM {} WHERE id = %s").format(TABLE_BUILDS),
                (build.build_id,),
            )
            row = await result.fetchone()

        if row is None:
            raise LookupError(f"build {build.build_id} not found")
        return bool(row[0])

    async def set_drained(self, build: Build, drained: bool = True) -> None:
        """
        Set the drained flag in a single UPDATE.

        Idempotent: setting the current value again is not an error.

        Raises:
            LookupError: the build no longer exists
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET drained = %s
                WHERE id = %s
                """).format(TABLE_BUILDS),
                (drained, build.build_id),
            )

            if result.rowcount == 0:
                raise LookupError(f"build {build.build_id} not found")

        build.drained = drained
        logger.debug(f"Set drained={drained} for build {build.build_id}")

    def _row_to_build(self, row: dict) -> Build:
        """Convert database row to Build model."""
        return Build(
            build_id=row["id"],
            name=row["name"],
            status=BuildStatus(row["status"]),
            team_name=row["team_name"],
            pipeline_name=row.get("pipeline_name"),
            job_name=row.get("job_name"),
            public_plan=row.get("public_plan"),
            drained=row.get("drained", False),
        )


__all__ = ["BuildRepository"]
