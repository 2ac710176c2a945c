# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core module initialization
# PURPOSE: Export core contracts and models
# LAST_REVIEWED: 17 OCT 2026
# ============================================================================

from core.contracts import BuildStatus, DrainState
from core.models import (
    Build,
    BuildEvent,
    EventType,
    MetricEvent,
    Plan,
)

__all__ = [
    # Enums
    "BuildStatus",
    "DrainState",
    "EventType",
    # Models
    "Build",
    "BuildEvent",
    "MetricEvent",
    "Plan",
]
