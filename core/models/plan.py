# ============================================================================
# PUBLIC PLAN MODEL
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core model - Build-scoped execution plan
# PURPOSE: Recover human-readable step names from a build's public plan
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: Plan, PlanStep
# DEPENDENCIES: pydantic
# ============================================================================
"""
Public Plan Model

The public plan is the serialized, build-scoped description of what the
build ran. The drain only uses it to recover a step name for each event.

A plan node is either a named step (task, get, put, ...) or a composite
that wraps other plans (do, in_parallel, on_success, try, ...). Every node
may carry an `id`; step events reference it through `origin.id`.

Unknown keys are ignored so newer plan shapes still parse.
"""

import json
from typing import Any, Iterator, List, Optional
from pydantic import BaseModel, ConfigDict, Field

_LEAF_KEYS = ("task", "get", "put", "set_pipeline", "load_var", "check")


class PlanStep(BaseModel):
    """A leaf step that carries a name (task, get, put, ...)."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None


class Plan(BaseModel):
    """
    One node of a public plan.

    Named leaves:  task, get, put, set_pipeline, load_var, check
    Composites:    do, aggregate, retry, in_parallel, across,
                   on_success, on_failure, on_abort, on_error, ensure,
                   try, timeout
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None

    # Named leaves
    task: Optional[PlanStep] = None
    get: Optional[PlanStep] = None
    put: Optional[PlanStep] = None
    set_pipeline: Optional[PlanStep] = None
    load_var: Optional[PlanStep] = None
    check: Optional[PlanStep] = None

    # List composites
    do: Optional[List["Plan"]] = None
    aggregate: Optional[List["Plan"]] = None
    retry: Optional[List["Plan"]] = None

    # Wrapped composites
    in_parallel: Optional["ParallelPlan"] = None
    across: Optional["AcrossPlan"] = None
    on_success: Optional["HookPlan"] = None
    on_failure: Optional["HookPlan"] = None
    on_abort: Optional["HookPlan"] = None
    on_error: Optional["HookPlan"] = None
    ensure: Optional["HookPlan"] = None
    try_: Optional["WrappedPlan"] = Field(default=None, alias="try")
    timeout: Optional["WrappedPlan"] = None

    @classmethod
    def parse(cls, raw: Any) -> Optional["Plan"]:
        """
        Parse a stored public plan.

        Args:
            raw: JSON text, bytes, or an already-decoded object

        Returns:
            Plan, or None when the build has no plan

        Raises:
            ValueError: plan is not valid JSON or not a plan object
        """
        if raw is None:
            return None
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw).decode("utf-8")
        if isinstance(raw, str):
            if not raw.strip():
                return None
            raw = json.loads(raw)
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise ValueError(f"public plan must be an object, got {type(raw).__name__}")
        return cls.model_validate(raw)

    def step_name(self) -> Optional[str]:
        """Name of this node's own leaf step, if it is one."""
        for leaf in _LEAF_KEYS:
            step = getattr(self, leaf)
            if step is not None and step.name:
                return step.name
        return None

    def children(self) -> List["Plan"]:
        """Direct sub-plans, in plan order."""
        result: List[Plan] = []
        for plans in (self.do, self.aggregate, self.retry):
            if plans:
                result.extend(plans)
        if self.in_parallel:
            result.extend(self.in_parallel.steps)
        if self.across:
            result.extend(s.step for s in self.across.steps if s.step is not None)
        for hook in (self.on_success, self.on_failure, self.on_abort, self.on_error, self.ensure):
            if hook:
                result.extend(hook.plans())
        for wrapped in (self.try_, self.timeout):
            if wrapped and wrapped.step is not None:
                result.append(wrapped.step)
        return result

    def walk(self) -> Iterator["Plan"]:
        """Depth-first, pre-order traversal."""
        yield self
        for child in self.children():
            yield from child.walk()

    def find(self, plan_id: str) -> Optional["Plan"]:
        """Find the node with the given id."""
        for node in self.walk():
            if node.id == plan_id:
                return node
        return None

    def first_step_name(self) -> Optional[str]:
        """First named step found depth-first."""
        for node in self.walk():
            name = node.step_name()
            if name:
                return name
        return None


class ParallelPlan(BaseModel):
    """in_parallel: {steps: [...], limit, fail_fast}"""
    model_config = ConfigDict(extra="ignore")

    steps: List[Plan] = Field(default_factory=list)


class AcrossSubstep(BaseModel):
    model_config = ConfigDict(extra="ignore")

    step: Optional[Plan] = None


class AcrossPlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: List[AcrossSubstep] = Field(default_factory=list)


class HookPlan(BaseModel):
    """
    A step plus the hook that follows it.

    The hook sits under the same key as the wrapper, e.g.
    {"on_success": {"step": {...}, "on_success": {...}}}.
    """
    model_config = ConfigDict(extra="ignore")

    step: Optional[Plan] = None
    on_success: Optional[Plan] = None
    on_failure: Optional[Plan] = None
    on_abort: Optional[Plan] = None
    on_error: Optional[Plan] = None
    ensure: Optional[Plan] = None
    next: Optional[Plan] = None

    def plans(self) -> List[Plan]:
        candidates = (
            self.step, self.on_success, self.on_failure,
            self.on_abort, self.on_error, self.ensure, self.next,
        )
        return [p for p in candidates if p is not None]


class WrappedPlan(BaseModel):
    """try / timeout: a single wrapped step."""
    model_config = ConfigDict(extra="ignore")

    step: Optional[Plan] = None


for _model in (Plan, ParallelPlan, AcrossSubstep, AcrossPlan, HookPlan, WrappedPlan):
    _model.model_rebuild()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Plan", "PlanStep"]
