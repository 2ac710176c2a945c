# ============================================================================
# BUILD EVENT REPOSITORY
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Ordered reads of the build event log
# PURPOSE: Forward-only event streams over the build_events table
# CREATED: 17 OCT 2026
# ============================================================================
"""
Build Event Repository

A BuildEventStream is a cursor over one build's events:
- starts at a given ordinal (0 for a full drain)
- advances strictly forward, in ordinal order
- is finite: bounded by the build's last ordinal at open time
- ends with EndOfBuildEventStream, raised exactly once
- holds one pooled connection until close()

close() never raises. Callers must still call it on every path.

Usage:
    stream = await EventRepository(pool).open_stream(build_id)
    try:
        while True:
            try:
                event = await stream.next()
            except EndOfBuildEventStream:
                break
            ...
    finally:
        await close_quietly(stream)
"""

import logging
from collections import deque
from typing import Any, Deque, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.models import BuildEvent
from .database import TABLE_BUILD_EVENTS

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


class EndOfBuildEventStream(Exception):
    """End-of-stream signal. Not an error."""

    def __init__(self, build_id: int):
        self.build_id = build_id
        super().__init__(f"end of event stream for build {build_id}")


class BuildEventStream:
    """Forward-only, paged cursor over a build's event log."""

    def __init__(
        self,
        pool: AsyncConnectionPool,
        build_id: int,
        from_ordinal: int = 0,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if from_ordinal < 0:
            raise ValueError(f"from_ordinal must be >= 0, got {from_ordinal}")
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")

        self.pool = pool
        self.build_id = build_id
        self.page_size = page_size
        self._position = from_ordinal
        self._last_ordinal = -1
        self._buffer: Deque[BuildEvent] = deque()
        self._conn = None
        self._ended = False
        self._closed = False

    async def open(self) -> "BuildEventStream":
        """
        Check out a connection and fix the stream's upper bound.

        Events appended after this point are not part of the stream.
        """
        self._conn = await self.pool.getconn()
        try:
            async with self._conn.transaction():
                cur = self._conn.cursor(row_factory=dict_row)
                await cur.execute(
                    sql.SQL("""
                    SELECT COALESCE(MAX(event_id), -1) AS last_ordinal
                    FROM {}
                    WHERE build_id = %s
                    """).format(TABLE_BUILD_EVENTS),
                    (self.build_id,),
                )
                row = await cur.fetchone()
            self._last_ordinal = row["last_ordinal"] if row else -1
        except Exception:
            await self._release_connection()
            self._closed = True
            raise

        logger.debug(
            f"Opened event stream for build {self.build_id} "
            f"(from={self._position}, last={self._last_ordinal})"
        )
        return self

    async def _fetch_page(self) -> None:
        async with self._conn.transaction():
            cur = self._conn.cursor(row_factory=dict_row)
            await cur.execute(
                sql.SQL("""
                SELECT build_id, event_id, type, version, payload
                FROM {}
                WHERE build_id = %s
                  AND event_id >= %s
                  AND event_id <= %s
                ORDER BY event_id ASC
                LIMIT %s
                """).format(TABLE_BUILD_EVENTS),
                (self.build_id, self._position, self._last_ordinal, self.page_size),
            )
            rows = await cur.fetchall()
        self._buffer.extend(self._row_to_event(row) for row in rows)

    async def next(self) -> BuildEvent:
        """
        Return the next event.

        Raises:
            EndOfBuildEventStream: stream exhausted (raised once)
            RuntimeError: called after end of stream or after close()
        """
        if self._closed:
            raise RuntimeError(f"event stream for build {self.build_id} is closed")
        if self._ended:
            raise RuntimeError(
                f"next() called after end of event stream for build {self.build_id}"
            )

        if not self._buffer and self._position <= self._last_ordinal:
            await self._fetch_page()

        if not self._buffer:
            self._ended = True
            raise EndOfBuildEventStream(self.build_id)

        event = self._buffer.popleft()
        self._position = event.event_id + 1
        return event

    async def _release_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await self.pool.putconn(conn)

    async def close(self) -> None:
        """
        Release the stream's connection.

        Safe to call more than once; errors are logged, never raised.
        """
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        try:
            await self._release_connection()
        except Exception as e:
            logger.warning(f"Error closing event stream for build {self.build_id}: {e}")

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self):
        return self

    async def __anext__(self) -> BuildEvent:
        try:
            return await self.next()
        except EndOfBuildEventStream:
            raise StopAsyncIteration

    async def __aenter__(self) -> "BuildEventStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @staticmethod
    def _row_to_event(row: dict) -> BuildEvent:
        """Convert database row to BuildEvent model."""
        payload = row.get("payload")
        if payload is not None and not isinstance(payload, str):
            payload = bytes(payload).decode("utf-8") if isinstance(payload, (bytes, memoryview)) else str(payload)
        return BuildEvent(
            build_id=row["build_id"],
            event_id=row["event_id"],
            event_type=row["type"],
            version=row.get("version") or "1.0",
            payload=payload,
        )


async def close_quietly(stream: Any) -> None:
    """Close a stream, logging (never raising) any error."""
    try:
        await stream.close()
    except Exception as e:
        logger.warning(f"Ignoring error while closing {type(stream).__name__}: {e}")


class EventRepository:
    """Repository for build event streams."""

    def __init__(self, pool: AsyncConnectionPool, page_size: int = DEFAULT_PAGE_SIZE):
        self.pool = pool
        self.page_size = page_size

    async def open_stream(self, build_id: int, from_ordinal: int = 0) -> BuildEventStream:
        """
        Open a stream over a build's events.

        Args:
            build_id: Build identifier
            from_ordinal: First ordinal to return

        Returns:
            Open BuildEventStream; the caller must close it
        """
        stream = BuildEventStream(
            self.pool,
            build_id,
            from_ordinal=from_ordinal,
            page_size=self.page_size,
        )
        return await stream.open()


__all__ = [
    "BuildEventStream",
    "EndOfBuildEventStream",
    "EventRepository",
    "close_quietly",
    "DEFAULT_PAGE_SIZE",
]
