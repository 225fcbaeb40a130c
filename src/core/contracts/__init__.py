from src.core.contracts.api import ApproveRequest, ExecutePlanRequest, PlanResponse, RejectRequest
from src.core.contracts.events import AuditOutcome, AuditRecord, EventType, ExecutionEvent
from src.core.contracts.plan import Intent, RiskLevel, TaskPlan, TaskStep, ValidatedPlan
from src.core.contracts.results import (
    ApprovalToken,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    ImpactSummary,
    PendingConfirmation,
    RollbackEntry,
    RollbackResult,
    RollbackStatus,
    StepError,
    StepResult,
    StepStatus,
)
from src.core.contracts.tool import ParameterSpec, Tool, ToolCategory, ToolContext, ToolOutcome

__all__ = [
    "ApproveRequest",
    "ExecutePlanRequest",
    "PlanResponse",
    "RejectRequest",
    "AuditOutcome",
    "AuditRecord",
    "EventType",
    "ExecutionEvent",
    "Intent",
    "RiskLevel",
    "TaskPlan",
    "TaskStep",
    "ValidatedPlan",
    "ApprovalToken",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStatus",
    "ImpactSummary",
    "PendingConfirmation",
    "RollbackEntry",
    "RollbackResult",
    "RollbackStatus",
    "StepError",
    "StepResult",
    "StepStatus",
    "ParameterSpec",
    "Tool",
    "ToolCategory",
    "ToolContext",
    "ToolOutcome",
]
