from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.core.contracts.plan import TaskPlan
from src.core.contracts.results import ExecutionResult, PendingConfirmation
from src.core.contracts.tool import ToolContext


class ExecutePlanRequest(BaseModel):
    plan: TaskPlan
    actor_id: str
    granted_permissions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_context(self) -> ToolContext:
        return ToolContext(
            actor_id=self.actor_id,
            granted_permissions=self.granted_permissions,
            metadata=self.metadata,
        )


class ApproveRequest(BaseModel):
    approver_id: str


class RejectRequest(BaseModel):
    reason: str = ""


class PlanResponse(BaseModel):
    kind: str  # validation_failed | awaiting_confirmation | succeeded | partially_failed | rolled_back | aborted
    plan_id: str
    result: ExecutionResult | None = None
    pending: PendingConfirmation | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def from_outcome(cls, outcome: ExecutionResult | PendingConfirmation) -> "PlanResponse":
        if isinstance(outcome, PendingConfirmation):
            return cls(kind=outcome.kind, plan_id=outcome.plan_id, pending=outcome)
        return cls(kind=outcome.kind, plan_id=outcome.plan_id, result=outcome)
