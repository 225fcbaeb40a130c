from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.core.clock import utc_now


class AuditOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"
    DENIED = "denied"


class AuditRecord(BaseModel):
    """One record per tool invocation attempt."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    actor_id: str
    tool_name: str
    step_id: str
    plan_id: str | None = None
    parameters_sanitized: dict[str, Any] = Field(default_factory=dict)
    outcome: AuditOutcome
    attempt: int = 1
    phase: str = "execute"  # "execute" | "rollback"
    error: str | None = None


class EventType(str, Enum):
    STEP_STARTED = "step:started"
    STEP_COMPLETED = "step:completed"
    STEP_FAILED = "step:failed"
    STEP_SKIPPED = "step:skipped"
    PLAN_AWAITING_CONFIRMATION = "plan:awaiting_confirmation"
    PLAN_ROLLING_BACK = "plan:rolling_back"
    PLAN_COMPLETED = "plan:completed"


class ExecutionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    plan_id: str
    step_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
