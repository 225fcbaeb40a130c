from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.clock import utc_now
from src.core.contracts.plan import RiskLevel, TaskPlan


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolledBack"


class ExecutionState(str, Enum):
    CREATED = "created"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


class StepError(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str  # "tool_execution" | "timeout" | "permission_denied" | "reference" | "cancelled"
    message: str


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    tool_name: str
    status: StepStatus
    output: Any = None
    error: StepError | None = None
    attempts: int = Field(default=1, ge=0)
    parameters: dict[str, Any] = Field(default_factory=dict)  # resolved; kept for rollback
    skip_reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    latency_ms: int | None = None

    @model_validator(mode="after")
    def _check_consistency(self) -> "StepResult":
        if (self.error is not None) != (self.status == StepStatus.FAILED):
            raise ValueError("error must be present iff status is failed")
        if self.status != StepStatus.SKIPPED and self.attempts < 1:
            raise ValueError("attempted steps record at least one attempt")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


class RollbackStatus(str, Enum):
    COMPENSATED = "compensated"
    NOT_REVERSIBLE = "notReversible"


class RollbackEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    tool_name: str
    compensating_tool: str | None = None
    status: RollbackStatus
    output: Any = None
    error: StepError | None = None


class RollbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    entries: list[RollbackEntry] = Field(default_factory=list)

    @property
    def compensated(self) -> list[str]:
        return [e.step_id for e in self.entries if e.status == RollbackStatus.COMPENSATED]

    @property
    def not_reversible(self) -> list[str]:
        return [e.step_id for e in self.entries if e.status == RollbackStatus.NOT_REVERSIBLE]

    @property
    def complete(self) -> bool:
        return not self.not_reversible


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    overall_status: ExecutionStatus
    state: ExecutionState
    steps: list[StepResult] = Field(default_factory=list)  # completion order
    rollback_result: RollbackResult | None = None
    transitions: list[ExecutionState] = Field(default_factory=list)
    actor_id: str | None = None
    approved_by: str | None = None
    abort_reason: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def kind(self) -> str:
        return self.state.value

    @property
    def failed_steps(self) -> list[StepResult]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @property
    def partially_failed(self) -> bool:
        return self.overall_status == ExecutionStatus.SUCCEEDED and bool(self.failed_steps)

    def step(self, step_id: str) -> StepResult | None:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        return None


class ImpactSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel
    step_count: int
    tools: list[str] = Field(default_factory=list)
    destructive_steps: list[str] = Field(default_factory=list)
    required_permissions: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)


class PendingConfirmation(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: TaskPlan
    impact_summary: ImpactSummary
    plan_digest: str
    actor_id: str | None = None
    # the actor's grant at submission; execution after approval runs under it
    granted_permissions: list[str] = Field(default_factory=list)
    requested_at: datetime = Field(default_factory=utc_now)

    @property
    def plan_id(self) -> str:
        return self.plan.id

    @property
    def kind(self) -> str:
        return ExecutionState.AWAITING_CONFIRMATION.value


class ApprovalToken(BaseModel):
    """Explicit human approval bound to one plan's identity and content."""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    approver_id: str
    plan_digest: str
    issued_at: datetime = Field(default_factory=utc_now)
