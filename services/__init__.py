# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core - Business logic layer
# PURPOSE: Event translation and build drain coordination
# CREATED: 17 OCT 2026
# ============================================================================
"""
Services Module

Business logic for the metric drain.
Services coordinate between repositories and the metrics sink.

Usage:
    from services import DrainCoordinator, EventTranslator

    coordinator = DrainCoordinator(build_repo, EventTranslator(), emitter)
    summary = await coordinator.run()
"""

from .translator import EventTranslator, DEFAULT_SKIP_TYPES
from .drain_service import (
    DrainCoordinator,
    DrainSummary,
    BuildDrainResult,
    BuildDrainError,
    DrainRunError,
)

__all__ = [
    "EventTranslator",
    "DEFAULT_SKIP_TYPES",
    "DrainCoordinator",
    "DrainSummary",
    "BuildDrainResult",
    "BuildDrainError",
    "DrainRunError",
]
