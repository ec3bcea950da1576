"""Request and response models for the feature flag routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .gradual import RolloutPlan
from .models import FeatureFlag
from .rollout import FlagDecision


class FlagResponse(BaseModel):
    name: str
    enabled: bool
    rollout_percent: int
    description: str
    phase: str
    canary_roles: list[str]
    dependencies: list[str]
    updated_at: datetime | None = None
    updated_by: int | None = None

    @classmethod
    def from_flag(cls, flag: FeatureFlag) -> FlagResponse:
        """Build the public view of a flag."""
        return cls(
            name=flag.name,
            enabled=flag.enabled,
            rollout_percent=flag.rollout_percent,
            description=flag.description,
            phase=flag.phase,
            canary_roles=sorted(role.label for role in flag.canary_roles),
            dependencies=list(flag.dependencies),
            updated_at=flag.updated_at,
            updated_by=flag.updated_by,
        )


class FlagDecisionResponse(BaseModel):
    flag: str
    enabled: bool
    reason: str
    dependency: str | None = None

    @classmethod
    def from_decision(cls, decision: FlagDecision) -> FlagDecisionResponse:
        """Build the public view of an evaluation."""
        return cls(
            flag=decision.flag,
            enabled=decision.enabled,
            reason=str(decision.reason),
            dependency=decision.dependency,
        )


class EnableRequest(BaseModel):
    rollout_percent: int = Field(default=100, ge=0, le=100)


class RolloutRequest(BaseModel):
    target_percent: int = Field(default=100, ge=0, le=100)
    step_percent: int = Field(default=RolloutPlan.DEFAULT_STEP_PERCENT, gt=0, le=100)
    step_duration: float = Field(default=RolloutPlan.DEFAULT_STEP_DURATION, ge=0)


class RolloutResponse(BaseModel):
    flag: str
    target_percent: int
    step_percent: int
    step_duration: float
    status: str
