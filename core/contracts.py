# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Foundation - Core enums shared across the drain pipeline
# PURPOSE: Build status and drain lifecycle states
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: BuildStatus, DrainState
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the metric drain.

These enums cross two boundaries:
- SQL (the build store's status column)
- Python (the drain coordinator's per-build state machine)
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class BuildStatus(str, Enum):
    """
    Build lifecycle states as recorded by the build store.

    State transitions:
        PENDING -> STARTED -> SUCCEEDED
                           -> FAILED
                           -> ERRORED
                           -> ABORTED
    """
    PENDING = "pending"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERRORED = "errored"
    ABORTED = "aborted"

    def is_terminal(self) -> bool:
        """Check if the build has finished (no more events will be appended)."""
        return self in (
            BuildStatus.SUCCEEDED,
            BuildStatus.FAILED,
            BuildStatus.ERRORED,
            BuildStatus.ABORTED,
        )


class DrainState(str, Enum):
    """
    Per-build drain states.

    State transitions:
        SELECTED -> STREAMING -> COMPLETED
                              -> FAILED
                 -> SKIPPED (claimed by another worker)
    """
    SELECTED = "selected"        # Returned by the build selector
    STREAMING = "streaming"      # Event stream open, pumping events
    COMPLETED = "completed"      # Every event emitted, stream closed
    FAILED = "failed"            # Read/translate/emit error, stream closed
    SKIPPED = "skipped"          # Per-build claim held elsewhere

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (DrainState.COMPLETED, DrainState.FAILED, DrainState.SKIPPED)


__all__ = ["BuildStatus", "DrainState"]
