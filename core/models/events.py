# ============================================================================
# BUILD EVENT MODEL
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core model - Append-only build event log records
# PURPOSE: Immutable ordered events read from a build's log
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: BuildEvent, EventType
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Build Event Model

A BuildEvent is one record in a build's append-only event log.
Events are never mutated or deleted by the drain.

The type tag is kept as a plain string: the build store may write types
this worker has never heard of, and those must still be drained.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Known build event type tags."""

    STATUS = "status"
    LOG = "log"
    ERROR = "error"
    SELECTED_WORKER = "selected-worker"

    # Step lifecycle
    INITIALIZE = "initialize"
    START = "start"
    FINISH = "finish"

    INITIALIZE_TASK = "initialize-task"
    START_TASK = "start-task"
    FINISH_TASK = "finish-task"

    INITIALIZE_GET = "initialize-get"
    START_GET = "start-get"
    FINISH_GET = "finish-get"

    INITIALIZE_PUT = "initialize-put"
    START_PUT = "start-put"
    FINISH_PUT = "finish-put"


class BuildEvent(BaseModel):
    """
    A single event in a build's log.

    Maps to: build_events table
    """

    model_config = ConfigDict(frozen=True)

    build_id: int
    event_id: int = Field(..., ge=0, description="Ordinal position in the build's log")
    event_type: str = Field(..., description="Type tag, e.g. 'log' or 'finish-task'")
    version: str = Field(default="1.0")
    payload: Optional[str] = Field(
        default=None,
        description="Opaque JSON payload; never forwarded to metrics"
    )

    @property
    def is_log(self) -> bool:
        return self.event_type == EventType.LOG.value

    def origin_id(self) -> Optional[str]:
        """
        Plan id of the step that produced this event, if the payload has one.

        Only the origin is read out of the payload.
        """
        if not self.payload:
            return None
        try:
            data: Dict[str, Any] = json.loads(self.payload)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        origin = data.get("origin")
        if isinstance(origin, dict) and origin.get("id"):
            return str(origin["id"])
        return None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["BuildEvent", "EventType"]
