# ============================================================================
# METRIC EMITTER TESTS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Tests - Log, HTTP, and fan-out sinks
# PURPOSE: Verify delivery, failure reporting, and emitter wiring
# CREATED: 17 OCT 2026
# ============================================================================
"""
Metric Emitter Tests

Run with:
    pytest tests/test_emitters.py -v
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.config import MetricsConfig
from core.models import MetricEvent
from core.observability import (
    FanOutEmitter,
    HttpMetricEmitter,
    LogMetricEmitter,
    MetricEmitError,
    build_emitter,
)


def make_metric(**attributes):
    return MetricEvent(
        name="build event",
        attributes=attributes or {"team": "main", "type": "start"},
        host="web-1",
    )


class TestLogMetricEmitter:
    def test_writes_one_record(self, caplog):
        emitter = LogMetricEmitter()
        with caplog.at_level(logging.INFO):
            asyncio.run(emitter.emit(make_metric()))

        records = [r for r in caplog.records if r.getMessage() == "metric: build event"]
        assert len(records) == 1
        assert records[0].extra["metric"]["attributes"] == {"team": "main", "type": "start"}
        assert records[0].extra["metric"]["host"] == "web-1"


class TestHttpMetricEmitter:
    """Tests for HttpMetricEmitter using httpx.MockTransport."""

    def test_posts_json_payload(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        emitter = HttpMetricEmitter("http://collector/metrics", transport=httpx.MockTransport(handler))

        async def run():
            await emitter.emit(make_metric(team="main", type="finish"))
            await emitter.close()

        asyncio.run(run())
        assert len(received) == 1
        assert received[0]["name"] == "build event"
        assert received[0]["host"] == "web-1"
        assert received[0]["attributes"] == {"team": "main", "type": "finish"}

    def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded"))
        emitter = HttpMetricEmitter("http://collector/metrics", transport=transport)

        async def run():
            try:
                await emitter.emit(make_metric())
            finally:
                await emitter.close()

        with pytest.raises(MetricEmitError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.sink == "http"
        assert "503" in str(exc_info.value)

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        emitter = HttpMetricEmitter("http://collector/metrics", transport=httpx.MockTransport(handler))

        async def run():
            try:
                await emitter.emit(make_metric())
            finally:
                await emitter.close()

        with pytest.raises(MetricEmitError) as exc_info:
            asyncio.run(run())
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        emitter = HttpMetricEmitter("http://collector/metrics", transport=httpx.MockTransport(handler))

        async def run():
            try:
                await emitter.emit(make_metric())
            finally:
                await emitter.close()

        with pytest.raises(MetricEmitError, match="timeout"):
            asyncio.run(run())


class TestFanOutEmitter:
    def test_delivers_to_every_sink_in_order(self):
        calls = []
        first = MagicMock(emit=AsyncMock(side_effect=lambda e: calls.append("first")))
        second = MagicMock(emit=AsyncMock(side_effect=lambda e: calls.append("second")))

        asyncio.run(FanOutEmitter([first, second]).emit(make_metric()))
        assert calls == ["first", "second"]

    def test_first_failure_raises(self):
        first = MagicMock(emit=AsyncMock(side_effect=MetricEmitError("http", "down")))
        second = MagicMock(emit=AsyncMock())

        with pytest.raises(MetricEmitError):
            asyncio.run(FanOutEmitter([first, second]).emit(make_metric()))
        second.emit.assert_not_awaited()

    def test_close_closes_all_despite_errors(self):
        first = MagicMock(close=AsyncMock(side_effect=RuntimeError("boom")))
        first.name = "first"
        second = MagicMock(close=AsyncMock())

        asyncio.run(FanOutEmitter([first, second]).close())
        second.close.assert_awaited_once()


class TestBuildEmitter:
    """Tests for build_emitter() wiring."""

    def test_no_sink_falls_back_to_logs(self):
        assert isinstance(build_emitter(MetricsConfig()), LogMetricEmitter)

    def test_http_only(self):
        emitter = build_emitter(MetricsConfig(http_url="http://collector/metrics"))
        assert isinstance(emitter, HttpMetricEmitter)
        asyncio.run(emitter.close())

    def test_logs_and_http(self):
        emitter = build_emitter(MetricsConfig(emit_to_logs=True, http_url="http://collector/metrics"))
        assert isinstance(emitter, FanOutEmitter)
        assert [e.name for e in emitter.emitters] == ["logs", "http"]
        asyncio.run(emitter.close())
