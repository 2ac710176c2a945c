# ============================================================================
# METRIC EVENT MODEL
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core model - Emitted-only metric value
# PURPOSE: Discrete metric events handed to the metrics sink
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: MetricEvent, BUILD_EVENT_METRIC
# DEPENDENCIES: pydantic
# ============================================================================
"""
Metric Event Model

A MetricEvent is ephemeral: built by the translator, handed to the
emitter, never persisted by the drain.
"""

from datetime import datetime, timezone
from typing import Dict, Optional
from pydantic import BaseModel, Field

BUILD_EVENT_METRIC = "build event"


class MetricEvent(BaseModel):
    """A named metric with string attributes."""

    name: str = Field(..., max_length=128)
    attributes: Dict[str, str] = Field(default_factory=dict)
    host: Optional[str] = Field(
        default=None,
        description="Host label attached by the emitter configuration"
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, object]:
        """Wire representation used by sinks that serialize to JSON."""
        return {
            "name": self.name,
            "host": self.host,
            "time": self.timestamp.isoformat(),
            "attributes": dict(self.attributes),
        }


__all__ = ["MetricEvent", "BUILD_EVENT_METRIC"]
