# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Infrastructure - Connections and locks
# PURPOSE: Retrying Postgres connections and advisory locks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Infrastructure module for the metric drain.

Provides:
- ConnectionProvider: Opens the main pool and the dedicated lock pool
- RetryingAsyncConnection: psycopg connection that retries transient errors
- LockService: Session-level Postgres advisory locks

Usage:
    from infrastructure import ConnectionProvider, LockService

    provider = ConnectionProvider(conninfo, retry=RetryDefaults())
    pool = await provider.open_pool()
    locks = LockService(await provider.open_lock_pool())
"""

from infrastructure.postgresql import (
    ConnectionProvider,
    RetryingAsyncConnection,
    is_transient_error,
    mask_conninfo,
)
from infrastructure.locking import (
    Lock,
    LockService,
)

__all__ = [
    # PostgreSQL
    'ConnectionProvider',
    'RetryingAsyncConnection',
    'is_transient_error',
    'mask_conninfo',
    # Locking
    'Lock',
    'LockService',
]
