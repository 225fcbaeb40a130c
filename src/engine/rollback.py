from __future__ import annotations

import logging
from collections.abc import Sequence

from src.core.contracts.plan import ValidatedPlan
from src.core.contracts.results import (
    ExecutionResult,
    RollbackEntry,
    RollbackResult,
    RollbackStatus,
    StepError,
    StepResult,
    StepStatus,
)
from src.core.contracts.tool import Tool, ToolContext
from src.core.exceptions import ReferenceResolutionError, UnknownToolError
from src.engine.references import derive_compensation_parameters
from src.engine.step_executor import StepExecutor
from src.tools.registry import ToolRegistry

log = logging.getLogger("rollback")

# used when rollback is requested outside an engine run
SYSTEM_CONTEXT = ToolContext(actor_id="system:rollback", granted_permissions=["*"])


def _undo_context(context: ToolContext, compensator: Tool, step_id: str) -> ToolContext:
    """Actor context for one compensating call.

    The succeeded forward step authorises undoing its own effect, so the actor
    is granted the compensator's permission for this call only. The audit
    record still names the actor.
    """
    granted = list(context.granted_permissions)
    if compensator.required_permission and not context.has_permission(compensator.required_permission):
        granted.append(compensator.required_permission)
    return context.model_copy(
        update={"granted_permissions": granted, "metadata": {**context.metadata, "compensating_step": step_id}}
    )


class RollbackCoordinator:
    """Best-effort undo of succeeded steps, newest first.

    Every compensator is called at most once per step per rollback; a failing
    compensator is recorded as notReversible and the walk continues.
    """

    def __init__(self, registry: ToolRegistry, executor: StepExecutor):
        self.registry = registry
        self.executor = executor

    async def rollback(
        self,
        execution: ExecutionResult | Sequence[StepResult],
        validated: ValidatedPlan,
        context: ToolContext | None = None,
    ) -> RollbackResult:
        context = context if context is not None else SYSTEM_CONTEXT
        steps = execution.steps if isinstance(execution, ExecutionResult) else list(execution)
        succeeded = [r for r in steps if r.status == StepStatus.SUCCEEDED and validated.plan.get_step(r.step_id)]
        log.info("rollback %s: %d succeeded step(s) to undo", validated.plan_id, len(succeeded))

        entries: list[RollbackEntry] = []
        compensated: set[str] = set()
        for result in reversed(succeeded):
            if result.step_id in compensated:
                continue
            compensated.add(result.step_id)
            entries.append(await self._undo(result, validated, context))

        rollback_result = RollbackResult(plan_id=validated.plan_id, entries=entries)
        if rollback_result.complete:
            log.info("rollback %s: complete (%d compensated)", validated.plan_id, len(rollback_result.compensated))
        else:
            log.warning("rollback %s: not reversible: %s", validated.plan_id, ", ".join(rollback_result.not_reversible))
        return rollback_result

    async def _undo(self, result: StepResult, validated: ValidatedPlan, context: ToolContext) -> RollbackEntry:
        step = validated.step(result.step_id)
        tool = self.registry.lookup(step.tool_name)

        def not_reversible(error: StepError | None = None) -> RollbackEntry:
            return RollbackEntry(
                step_id=step.id,
                tool_name=tool.name,
                compensating_tool=tool.compensating_tool,
                status=RollbackStatus.NOT_REVERSIBLE,
                error=error,
            )

        if not tool.reversible or not tool.compensating_tool:
            return not_reversible()
        try:
            compensator = self.registry.lookup(tool.compensating_tool)
            parameters = derive_compensation_parameters(tool.compensation_parameters, result.parameters, result.output)
        except UnknownToolError as e:
            return not_reversible(StepError(type="unknown_tool", message=str(e)))
        except ReferenceResolutionError as e:
            return not_reversible(StepError(type="reference", message=str(e)))

        log.info("↺ %s: %s -> %s", step.id, tool.name, compensator.name)
        outcome = await self.executor.compensate(
            compensator, parameters, _undo_context(context, compensator, step.id), step.id, validated.plan_id
        )
        if not outcome.success:
            return not_reversible(StepError(type="compensation_failed", message=outcome.error or "compensation failed"))
        return RollbackEntry(
            step_id=step.id,
            tool_name=tool.name,
            compensating_tool=compensator.name,
            status=RollbackStatus.COMPENSATED,
            output=outcome.data,
        )
