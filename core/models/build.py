# ============================================================================
# BUILD MODEL
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Core model - One execution run of a job
# PURPOSE: Read handle on a build row selected for draining
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: Build
# DEPENDENCIES: pydantic
# ============================================================================
"""
Build Model

A Build identifies one execution run of a job within a pipeline.
The build store owns the row; the drain only reads identity fields and
the public plan, and flips the drained flag once.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from core.contracts import BuildStatus


class Build(BaseModel):
    """
    A finished build awaiting (or past) draining.

    Maps to: builds table (joined with teams, pipelines, jobs for names)
    """

    build_id: int = Field(..., description="Primary key of the build row")
    team_name: str = Field(..., max_length=128)
    pipeline_name: Optional[str] = Field(
        default=None,
        description="Pipeline name (NULL for one-off builds)"
    )
    job_name: Optional[str] = Field(
        default=None,
        description="Job name (NULL for one-off builds)"
    )
    name: str = Field(..., description="Build name, e.g. '42' or '42.1'")
    status: BuildStatus = Field(default=BuildStatus.SUCCEEDED)

    # Serialized execution plan, only used to recover a step name
    public_plan: Optional[Any] = Field(
        default=None,
        description="Raw public plan JSON (string or decoded object)"
    )

    drained: bool = Field(default=False)

    def identity(self) -> Dict[str, str]:
        """Identity fields used for metric attributes and log context."""
        return {
            "team": self.team_name,
            "pipeline": self.pipeline_name or "",
            "job": self.job_name or "",
            "build": self.name,
        }


__all__ = ["Build"]
