from __future__ import annotations


class ConfigError(Exception):
    """Raised when config loading or validation fails."""


class EngineError(Exception):
    """Base for every error raised by the planning and execution engine."""


# Registry


class DuplicateToolError(EngineError):
    def __init__(self, tool_name: str):
        super().__init__(f"Tool already registered: {tool_name}")
        self.tool_name = tool_name


class InvalidToolError(EngineError):
    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool {tool_name} rejected: {reason}")
        self.tool_name = tool_name
        self.reason = reason


# Validation


class PlanValidationError(EngineError):
    """Raised before any side effect when a plan is structurally invalid."""

    code = "validation_error"
    step_id: str | None = None

    def details(self) -> dict:
        return {"code": self.code, "message": str(self), "step_id": self.step_id}


class UnknownToolError(PlanValidationError):
    code = "unknown_tool"

    def __init__(self, tool_name: str, step_id: str | None = None):
        where = f" (step {step_id})" if step_id else ""
        super().__init__(f"Unknown tool: {tool_name}{where}")
        self.tool_name = tool_name
        self.step_id = step_id

    def details(self) -> dict:
        return {**super().details(), "tool_name": self.tool_name}


class DanglingDependencyError(PlanValidationError):
    code = "dangling_dependency"

    def __init__(self, step_id: str, missing_dep: str):
        super().__init__(f"Step {step_id} depends on unknown step {missing_dep}")
        self.step_id = step_id
        self.missing_dep = missing_dep

    def details(self) -> dict:
        return {**super().details(), "missing_dep": self.missing_dep}


class CyclicDependencyError(PlanValidationError):
    code = "cyclic_dependency"

    def __init__(self, cycle: list[str]):
        super().__init__("Dependency cycle: " + " -> ".join(cycle))
        self.cycle = list(cycle)
        self.step_id = cycle[0] if cycle else None

    def details(self) -> dict:
        return {**super().details(), "cycle": self.cycle}


class MissingParameterError(PlanValidationError):
    code = "missing_parameter"

    def __init__(self, step_id: str, param_name: str, reason: str | None = None):
        msg = f"Step {step_id} is missing required parameter '{param_name}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.step_id = step_id
        self.param_name = param_name

    def details(self) -> dict:
        return {**super().details(), "param_name": self.param_name}


class InvalidParameterError(PlanValidationError):
    code = "invalid_parameter"

    def __init__(self, step_id: str, param_name: str, reason: str):
        super().__init__(f"Step {step_id} parameter '{param_name}' is invalid: {reason}")
        self.step_id = step_id
        self.param_name = param_name
        self.reason = reason

    def details(self) -> dict:
        return {**super().details(), "param_name": self.param_name, "reason": self.reason}


# Execution


class ToolPermissionError(EngineError):
    """Actor lacks the permission a tool requires. Never retried."""

    def __init__(self, tool_name: str, required: str, actor_id: str | None = None):
        super().__init__(f"Actor {actor_id or '?'} lacks permission '{required}' for tool {tool_name}")
        self.tool_name = tool_name
        self.required = required
        self.actor_id = actor_id


class ToolExecutionError(EngineError):
    """A tool call failed. Retried when the step is retryable."""

    def __init__(self, message: str, tool_name: str | None = None, retryable: bool = True):
        super().__init__(message)
        self.tool_name = tool_name
        self.retryable = retryable


class StepTimeoutError(ToolExecutionError):
    def __init__(self, tool_name: str, timeout_seconds: float):
        super().__init__(f"Tool {tool_name} exceeded {timeout_seconds}s", tool_name=tool_name)
        self.timeout_seconds = timeout_seconds


class ReferenceResolutionError(ToolExecutionError):
    """A symbolic parameter reference points at output that does not exist. Not retried."""

    def __init__(self, reference: str, reason: str):
        super().__init__(f"Cannot resolve reference '{reference}': {reason}", retryable=False)
        self.reference = reference


# Confirmation / approval


class UnknownPlanError(EngineError):
    def __init__(self, plan_id: str):
        super().__init__(f"No pending or running plan with id {plan_id}")
        self.plan_id = plan_id


class ConfirmationRequiredError(EngineError):
    """Raised when a caller tries to bypass a pending confirmation."""


class ApprovalMismatchError(EngineError):
    """Approval token is not bound to the plan being executed."""


class ConfirmationExpiredError(EngineError):
    def __init__(self, plan_id: str, age_seconds: float):
        super().__init__(f"Confirmation for plan {plan_id} expired after {age_seconds:.0f}s")
        self.plan_id = plan_id
        self.age_seconds = age_seconds
