# ============================================================================
# OBSERVABILITY
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Metric emitters
# PURPOSE: Deliver metric events to the configured sinks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Observability

Metric emitters deliver MetricEvents to a sink. The drain coordinator
receives one emitter at construction and never looks one up globally.

Sinks:
- LogMetricEmitter: one structured log record per metric
- HttpMetricEmitter: JSON POST per metric to a collector endpoint
- FanOutEmitter: several sinks, in order

Delivery is synchronous from the drain's point of view: emit() returns
once the sink accepted the event, or raises MetricEmitError.

Usage:
    from core.observability import build_emitter

    emitter = build_emitter(settings.metrics)
    try:
        await emitter.emit(event)
    finally:
        await emitter.close()
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import httpx

from core.config import MetricsConfig
from core.logging import get_logger, ComponentType
from core.models import MetricEvent

logger = logging.getLogger(__name__)


class MetricEmitError(Exception):
    """Raised when a sink rejects or cannot receive a metric event."""

    def __init__(self, sink: str, message: str):
        self.sink = sink
        super().__init__(f"{sink}: {message}")


# ============================================================================
# EMITTER INTERFACE
# ============================================================================

class MetricEmitter(ABC):
    """A metrics sink."""

    name: str = "emitter"

    @abstractmethod
    async def emit(self, event: MetricEvent) -> None:
        """Deliver one event. Raises MetricEmitError on failure."""

    async def close(self) -> None:
        """Flush and release sink resources."""


class LogMetricEmitter(MetricEmitter):
    """Writes each metric as a log record, carrying the current log context."""

    name = "logs"

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._logger = get_logger("metrics.emit", ComponentType.METRICS)

    async def emit(self, event: MetricEvent) -> None:
        self._logger.log(
            self.level,
            f"metric: {event.name}",
            extra={"metric": event.to_payload()},
        )


class HttpMetricEmitter(MetricEmitter):
    """
    POSTs each metric as JSON to a collector URL.

    Any transport error or non-2xx response raises MetricEmitError; the
    drain does not retry, the next run does.
    """

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def emit(self, event: MetricEvent) -> None:
        try:
            resp = await self._client.post(self.url, json=event.to_payload())
        except httpx.TimeoutException as e:
            raise MetricEmitError(self.name, f"timeout posting to {self.url}: {e}") from e
        except httpx.HTTPError as e:
            raise MetricEmitError(self.name, f"cannot reach {self.url}: {e}") from e

        if resp.status_code >= 300:
            raise MetricEmitError(
                self.name,
                f"collector returned {resp.status_code}: {resp.text[:200]}",
            )

    async def close(self) -> None:
        await self._client.aclose()


class FanOutEmitter(MetricEmitter):
    """Delivers each event to every sink in order; the first failure raises."""

    name = "fan-out"

    def __init__(self, emitters: Sequence[MetricEmitter]):
        self.emitters: List[MetricEmitter] = list(emitters)

    async def emit(self, event: MetricEvent) -> None:
        for emitter in self.emitters:
            await emitter.emit(event)

    async def close(self) -> None:
        for emitter in self.emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.warning(f"Error closing {emitter.name} emitter: {e}")


def build_emitter(
    config: MetricsConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> MetricEmitter:
    """
    Wire the configured sinks.

    With no sink configured, metrics go to the logs so a run is never
    silently discarded.
    """
    emitters: List[MetricEmitter] = []

    if config.emit_to_logs or not config.has_sink:
        emitters.append(LogMetricEmitter())
    if config.http_url:
        emitters.append(HttpMetricEmitter(
            config.http_url,
            timeout=config.http_timeout_seconds,
            transport=transport,
        ))

    logger.info(f"Metric emitters: {[e.name for e in emitters]}")

    if len(emitters) == 1:
        return emitters[0]
    return FanOutEmitter(emitters)


# ============================================================================
# LOCK HOOKS
# ============================================================================

def log_lock_acquired(name: str) -> None:
    logger.debug(f"lock acquired: {name}")


def log_lock_released(name: str) -> None:
    logger.debug(f"lock released: {name}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MetricEmitError",
    "MetricEmitter",
    "LogMetricEmitter",
    "HttpMetricEmitter",
    "FanOutEmitter",
    "build_emitter",
    "log_lock_acquired",
    "log_lock_released",
]
