from __future__ import annotations

import hashlib
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.clock import utc_now


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Intent(BaseModel):
    """Structured request produced by an external NLU component."""

    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    raw_text: str | None = None


class TaskStep(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    tool_name: str = Field(validation_alias=AliasChoices("tool_name", "toolName", "tool"))
    parameters: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("depends_on", "dependsOn", "deps")
    )
    retryable: bool = True
    is_critical: bool = Field(default=True, validation_alias=AliasChoices("is_critical", "isCritical"))
    description: str = ""

    @field_validator("depends_on")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class TaskPlan(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, validation_alias=AliasChoices("id", "plan_id", "planId"))
    steps: list[TaskStep] = Field(default_factory=list)
    risk_level: RiskLevel = Field(default=RiskLevel.LOW, validation_alias=AliasChoices("risk_level", "riskLevel"))
    estimated_duration_seconds: float | None = Field(
        default=None, validation_alias=AliasChoices("estimated_duration_seconds", "estimatedDurationSeconds")
    )
    required_permissions: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("required_permissions", "requiredPermissions")
    )
    intent: Intent | None = None
    description: str = ""

    @field_validator("required_permissions")
    @classmethod
    def _sorted_unique(cls, v: list[str]) -> list[str]:
        return sorted(set(v))

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "TaskPlan":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        return self

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get_step(self, step_id: str) -> TaskStep | None:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None

    def digest(self) -> str:
        """Stable fingerprint used to bind approvals to this exact plan."""
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()


class ValidatedPlan(BaseModel):
    """A plan that passed every validation check, plus its topological order.

    Only the Plan Validator should construct this; the scheduler and the engine
    refuse bare TaskPlans.
    """

    model_config = ConfigDict(frozen=True)

    plan: TaskPlan
    topological_order: list[str]
    required_permissions: list[str] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=utc_now)

    @property
    def plan_id(self) -> str:
        return self.plan.id

    def step(self, step_id: str) -> TaskStep:
        step = self.plan.get_step(step_id)
        if step is None:
            raise KeyError(step_id)
        return step
