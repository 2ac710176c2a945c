# ============================================================================
# EVENT TRANSLATOR
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Service - Raw build events to metric events
# PURPOSE: Filtering policy and attribute derivation for emitted metrics
# CREATED: 17 OCT 2026
# ============================================================================
"""
Event Translator

Maps a build event to a metric event, or to None when the event is
filtered out.

Policy:
- 'log' events are skipped (noise reduction, configurable)
- every other event yields exactly one "build event" metric
- the event payload is never attached to the metric

Attributes: team, pipeline, job, build, step, type. Static attributes
from configuration sit underneath; per-event keys win on collision.

Step name:
- the plan step whose id matches the event's origin.id, if any
- otherwise the first named step in the plan, depth-first
- a missing or malformed plan gives step "" (logged once per build)
"""

import logging
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from core.models import Build, BuildEvent, EventType, MetricEvent, Plan, BUILD_EVENT_METRIC

logger = logging.getLogger(__name__)

DEFAULT_SKIP_TYPES: FrozenSet[str] = frozenset({EventType.LOG.value})


class EventTranslator:
    """Stateless apart from a per-build plan cache."""

    def __init__(
        self,
        static_attributes: Optional[Mapping[str, str]] = None,
        host: Optional[str] = None,
        skip_types: Iterable[str] = DEFAULT_SKIP_TYPES,
        metric_name: str = BUILD_EVENT_METRIC,
    ):
        self.static_attributes: Dict[str, str] = dict(static_attributes or {})
        self.host = host
        self.skip_types = frozenset(skip_types)
        self.metric_name = metric_name
        self._plan_cache: Tuple[Optional[int], Optional[Plan]] = (None, None)

    def should_skip(self, event: BuildEvent) -> bool:
        return event.event_type in self.skip_types

    def plan_for(self, build: Build) -> Optional[Plan]:
        """
        Parse (once per build) the build's public plan.

        Returns None when the plan is missing or cannot be parsed.
        """
        cached_id, cached_plan = self._plan_cache
        if cached_id == build.build_id:
            return cached_plan

        plan: Optional[Plan] = None
        try:
            plan = Plan.parse(build.public_plan)
            if plan is None:
                logger.warning(f"Build {build.build_id} has no public plan, step will be empty")
        except ValueError as e:
            logger.warning(f"Build {build.build_id} has a malformed public plan, step will be empty: {e}")

        self._plan_cache = (build.build_id, plan)
        return plan

    def step_name(self, build: Build, event: BuildEvent) -> str:
        """Derive the step name for an event."""
        plan = self.plan_for(build)
        if plan is None:
            return ""

        origin_id = event.origin_id()
        if origin_id:
            node = plan.find(origin_id)
            if node is not None:
                name = node.step_name() or node.first_step_name()
                if name:
                    return name

        return plan.first_step_name() or ""

    def translate(self, build: Build, event: BuildEvent) -> Optional[MetricEvent]:
        """
        Translate one event.

        Returns:
            MetricEvent, or None when the event type is skipped
        """
        if self.should_skip(event):
            return None

        attributes = dict(self.static_attributes)
        attributes.update(build.identity())
        attributes["step"] = self.step_name(build, event)
        attributes["type"] = str(event.event_type)

        return MetricEvent(
            name=self.metric_name,
            attributes=attributes,
            host=self.host,
        )


__all__ = ["EventTranslator", "DEFAULT_SKIP_TYPES"]
