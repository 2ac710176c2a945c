# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Database access layer
# PURPOSE: Build selection, event streaming, drained-flag updates
# CREATED: 17 OCT 2026
# ============================================================================
"""
Repositories Module

Provides database access for the build store.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import DatabasePools, BuildRepository

    async with DatabasePools(conninfo) as pools:
        repo = BuildRepository(pools.pool)
        builds = await repo.get_drainable_builds()
"""

from .database import DatabasePools
from .build_repo import BuildRepository
from .event_repo import (
    BuildEventStream,
    EndOfBuildEventStream,
    EventRepository,
    close_quietly,
)

__all__ = [
    "DatabasePools",
    "BuildRepository",
    "BuildEventStream",
    "EndOfBuildEventStream",
    "EventRepository",
    "close_quietly",
]
