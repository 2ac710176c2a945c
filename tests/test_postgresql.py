# ============================================================================
# POSTGRESQL CONNECTION TESTS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Tests - Resilient connection provider
# PURPOSE: Verify transient-error retry and pool sizing
# CREATED: 17 OCT 2026
# ============================================================================
"""
PostgreSQL Connection Tests

Covers:
1. Transient vs permanent error classification
2. Connect retries transient errors with exponential backoff
3. Permanent errors and exhausted retries raise
4. General pool and single-connection lock pool sizing
5. Permanent connect errors surface before any pool opens
6. Password masking for logs

Run with:
    pytest tests/test_postgresql.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest
from psycopg import AsyncConnection

from core.config import RetryDefaults
from infrastructure.postgresql import (
    ConnectionProvider,
    RetryingAsyncConnection,
    UNBOUNDED_LIFETIME,
    is_transient_error,
    mask_conninfo,
)
from repositories import DatabasePools


# ============================================================================
# ERROR CLASSIFICATION
# ============================================================================

class TestIsTransientError:
    """Tests for is_transient_error()."""

    def test_too_many_connections_is_transient(self):
        assert is_transient_error(psycopg.errors.TooManyConnections("too many"))

    def test_cannot_connect_now_is_transient(self):
        assert is_transient_error(psycopg.errors.CannotConnectNow("starting up"))

    def test_connection_exception_class_is_transient(self):
        assert is_transient_error(psycopg.errors.ConnectionFailure("link down"))

    def test_libpq_message_is_transient(self):
        err = psycopg.OperationalError(
            'connection to server at "127.0.0.1", port 5432 failed: Connection refused'
        )
        assert is_transient_error(err)

    def test_bad_password_is_permanent(self):
        assert not is_transient_error(psycopg.errors.InvalidPassword("password authentication failed"))

    def test_unknown_database_is_permanent(self):
        err = psycopg.OperationalError('FATAL:  database "nope" does not exist')
        assert not is_transient_error(err)

    def test_non_operational_is_permanent(self):
        assert not is_transient_error(ValueError("connection refused"))


# ============================================================================
# RETRYING CONNECT
# ============================================================================

class TestRetryingConnect:
    """Tests for RetryingAsyncConnection.connect()."""

    POLICY = RetryDefaults(max_attempts=3, base_delay_seconds=0.5, max_delay_seconds=10.0)

    def test_retries_then_succeeds(self):
        conn = MagicMock()
        connect = AsyncMock(side_effect=[
            psycopg.errors.TooManyConnections("too many"),
            psycopg.OperationalError("server closed the connection unexpectedly"),
            conn,
        ])
        cls = RetryingAsyncConnection.with_policy(self.POLICY)

        with patch.object(AsyncConnection, "connect", connect), \
                patch("infrastructure.postgresql.asyncio.sleep", new=AsyncMock()) as sleep:
            result = asyncio.run(cls.connect("dbname=atc"))

        assert result is conn
        assert connect.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    def test_permanent_error_not_retried(self):
        connect = AsyncMock(side_effect=psycopg.errors.InvalidPassword("auth failed"))
        cls = RetryingAsyncConnection.with_policy(self.POLICY)

        with patch.object(AsyncConnection, "connect", connect), \
                patch("infrastructure.postgresql.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(psycopg.OperationalError):
                asyncio.run(cls.connect("dbname=atc"))

        assert connect.await_count == 1
        sleep.assert_not_awaited()

    def test_gives_up_after_max_attempts(self):
        connect = AsyncMock(side_effect=psycopg.errors.TooManyConnections("too many"))
        cls = RetryingAsyncConnection.with_policy(self.POLICY)

        with patch.object(AsyncConnection, "connect", connect), \
                patch("infrastructure.postgresql.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(psycopg.errors.TooManyConnections):
                asyncio.run(cls.connect("dbname=atc"))

        assert connect.await_count == 3
        assert sleep.await_count == 2

    def test_with_policy_does_not_touch_base(self):
        cls = RetryingAsyncConnection.with_policy(self.POLICY)
        assert cls.retry_policy is self.POLICY
        assert RetryingAsyncConnection.retry_policy == RetryDefaults()
        assert issubclass(cls, RetryingAsyncConnection)

    def test_backoff_is_capped(self):
        policy = RetryDefaults(max_attempts=10, base_delay_seconds=1.0, max_delay_seconds=5.0)
        assert [policy.delay_for(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


# ============================================================================
# POOLS
# ============================================================================

def make_pool_class():
    pool_class = MagicMock()
    pool_class.side_effect = lambda **kwargs: MagicMock(
        open=AsyncMock(), close=AsyncMock(), name=kwargs["name"], kwargs=kwargs,
    )
    return pool_class


class TestConnectionProvider:
    """Tests for ConnectionProvider."""

    def test_general_pool_sizing(self):
        pool_class = make_pool_class()
        provider = ConnectionProvider("dbname=atc", pool_size=6, open_timeout=12.0)

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class):
            pool = asyncio.run(provider.open_pool())

        kwargs = pool_class.call_args.kwargs
        assert kwargs["min_size"] == 1
        assert kwargs["max_size"] == 6
        assert kwargs["open"] is False
        assert issubclass(kwargs["connection_class"], RetryingAsyncConnection)
        pool.open.assert_awaited_once_with(wait=True, timeout=12.0)

    def test_lock_pool_is_single_unrecycled_connection(self):
        pool_class = make_pool_class()
        provider = ConnectionProvider("dbname=atc")

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class):
            asyncio.run(provider.open_lock_pool())

        kwargs = pool_class.call_args.kwargs
        assert kwargs["min_size"] == 1
        assert kwargs["max_size"] == 1
        assert kwargs["max_lifetime"] == UNBOUNDED_LIFETIME
        assert kwargs["name"] == "metricdrain-locks"

    def test_close_closes_every_pool(self):
        pool_class = make_pool_class()
        provider = ConnectionProvider("dbname=atc")

        async def run():
            general = await provider.open_pool()
            locks = await provider.open_lock_pool()
            locks.close.side_effect = OSError("already gone")
            await provider.close()
            return general, locks

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class):
            general, locks = asyncio.run(run())

        general.close.assert_awaited_once()
        locks.close.assert_awaited_once()

    def test_database_pools_close_on_open_failure(self):
        pool_class = make_pool_class()
        opened = []

        def factory(**kwargs):
            pool = MagicMock(open=AsyncMock(), close=AsyncMock(), name=kwargs["name"])
            if kwargs["name"] == "metricdrain-locks":
                pool.open.side_effect = psycopg.OperationalError("connection refused")
            opened.append(pool)
            return pool

        pool_class.side_effect = factory
        connect = AsyncMock(return_value=MagicMock(close=AsyncMock()))

        async def run():
            async with DatabasePools("dbname=atc"):
                pass

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class), \
                patch.object(AsyncConnection, "connect", connect):
            with pytest.raises(psycopg.OperationalError):
                asyncio.run(run())

        assert len(opened) == 2
        for pool in opened:
            pool.close.assert_awaited_once()


class TestVerify:
    """Tests for the connection check run before pools open."""

    def test_verify_opens_and_closes_one_connection(self):
        conn = MagicMock(close=AsyncMock())
        connect = AsyncMock(return_value=conn)
        provider = ConnectionProvider("dbname=atc")

        with patch.object(AsyncConnection, "connect", connect):
            asyncio.run(provider.verify())

        connect.assert_awaited_once()
        conn.close.assert_awaited_once()

    def test_permanent_error_reported_before_pools_open(self):
        pool_class = make_pool_class()
        connect = AsyncMock(side_effect=psycopg.errors.InvalidPassword("password authentication failed"))

        async def run():
            async with DatabasePools("dbname=atc user=atc password=wrong"):
                pass

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class), \
                patch.object(AsyncConnection, "connect", connect), \
                patch("infrastructure.postgresql.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(psycopg.errors.InvalidPassword):
                asyncio.run(run())

        assert connect.await_count == 1
        sleep.assert_not_awaited()
        pool_class.assert_not_called()

    def test_exhausted_transient_error_reported_as_itself(self):
        pool_class = make_pool_class()
        connect = AsyncMock(side_effect=psycopg.errors.CannotConnectNow("the database system is starting up"))
        retry = RetryDefaults(max_attempts=2, base_delay_seconds=0.1)

        async def run():
            async with DatabasePools("dbname=atc", retry=retry):
                pass

        with patch("infrastructure.postgresql.AsyncConnectionPool", pool_class), \
                patch.object(AsyncConnection, "connect", connect), \
                patch("infrastructure.postgresql.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(psycopg.errors.CannotConnectNow):
                asyncio.run(run())

        assert connect.await_count == 2
        pool_class.assert_not_called()


class TestMaskConninfo:
    """Tests for mask_conninfo()."""

    def test_password_hidden(self):
        masked = mask_conninfo("host=db user=atc password=hunter2 dbname=atc")
        assert "hunter2" not in masked
        assert "***" in masked

    def test_no_password_unchanged(self):
        assert "hunter2" not in mask_conninfo("host=db dbname=atc")
