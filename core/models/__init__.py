# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 17 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Pydantic models for the metric drain:
    - Build: a finished build selected for draining
    - BuildEvent: one ordered record of a build's event log
    - Plan: the build's public plan (step name lookup only)
    - MetricEvent: what gets emitted to the metrics sink
"""

from core.models.build import Build
from core.models.events import BuildEvent, EventType
from core.models.plan import Plan, PlanStep
from core.models.metric import MetricEvent, BUILD_EVENT_METRIC

__all__ = [
    # Build
    "Build",
    # Events
    "BuildEvent",
    "EventType",
    # Plan
    "Plan",
    "PlanStep",
    # Metrics
    "MetricEvent",
    "BUILD_EVENT_METRIC",
]
