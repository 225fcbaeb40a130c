"""Execution Engine: validate -> confirm -> schedule -> execute -> roll back on critical failure."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.core.clock import utc_now
from src.core.config.models import EngineConfig
from src.core.contracts.events import EventType
from src.core.contracts.plan import TaskPlan, TaskStep, ValidatedPlan
from src.core.contracts.results import (
    ApprovalToken,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    PendingConfirmation,
    RollbackResult,
    StepResult,
    StepStatus,
)
from src.core.contracts.tool import ToolContext
from src.core.exceptions import (
    ApprovalMismatchError,
    ConfirmationExpiredError,
    ConfirmationRequiredError,
    EngineError,
    PlanValidationError,
    UnknownPlanError,
)
from src.engine.audit import AuditSink
from src.engine.confirmation import ConfirmationGate, RiskAssessment
from src.engine.events import EventBus
from src.engine.rollback import RollbackCoordinator
from src.engine.scheduler import DependencyScheduler
from src.engine.step_executor import StepExecutor
from src.engine.validator import PlanValidator
from src.tools.registry import ToolRegistry

log = logging.getLogger("engine")

State = ExecutionState


class StepResultLog:
    """Append-only results of one execution: one slot per step id, written once.

    Completion order is kept separately from the slots so concurrent steps of a
    batch can finish in any order.
    """

    def __init__(self, step_ids: list[str]):
        self._slots: dict[str, StepResult | None] = dict.fromkeys(step_ids)
        self._order: list[StepResult] = []

    def record(self, result: StepResult) -> None:
        if result.step_id not in self._slots:
            raise KeyError(f"Unknown step {result.step_id}")
        if self._slots[result.step_id] is not None:
            raise RuntimeError(f"Result for step {result.step_id} already recorded")
        self._slots[result.step_id] = result
        self._order.append(result)

    def get(self, step_id: str) -> StepResult | None:
        return self._slots.get(step_id)

    def outputs(self) -> dict[str, Any]:
        return {r.step_id: r.output for r in self._order if r.status == StepStatus.SUCCEEDED}

    def results(self) -> list[StepResult]:
        return list(self._order)


@dataclass
class _Pending:
    confirmation: PendingConfirmation
    validated: ValidatedPlan
    context: ToolContext


class ExecutionEngine:
    """Top-level entry point. One engine is shared by every agent in the process.

    Plans are borrowed for the duration of one call; the engine keeps only
    plans awaiting confirmation and the cancel handles of running executions.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: EngineConfig | None = None,
        audit_sink: AuditSink | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = registry
        self.config = config if config is not None else EngineConfig()
        self.events = events if events is not None else EventBus()
        self.clock = clock
        self.validator = PlanValidator(registry)
        self.gate = ConfirmationGate(registry)
        self.scheduler = DependencyScheduler()
        self.executor = StepExecutor(registry, audit_sink, self.config, sleep=sleep)
        self.rollback = RollbackCoordinator(registry, self.executor)
        self._pending: dict[str, _Pending] = {}
        self._running: dict[str, asyncio.Event] = {}

    # -- public API --------------------------------------------------------

    async def execute(
        self,
        plan: TaskPlan | ValidatedPlan,
        context: ToolContext,
        approval: ApprovalToken | None = None,
    ) -> ExecutionResult | PendingConfirmation:
        """Validate and run a plan, or park it for confirmation.

        Validation errors propagate before any tool is touched. A plan the
        confirmation gate flags comes back as PendingConfirmation unless an
        approval token bound to this exact plan is supplied.
        """
        transitions = [State.CREATED, State.VALIDATING]
        task_plan = plan.plan if isinstance(plan, ValidatedPlan) else plan
        try:
            validated = self.validator.validate(plan)
        except PlanValidationError as e:
            log.warning("plan %s rejected: %s", task_plan.id, e)
            raise

        if approval is not None:
            self._check_approval(approval, validated.plan)
            self._pending.pop(validated.plan_id, None)
            return await self._run(validated, context, transitions, approved_by=approval.approver_id)

        if validated.plan_id in self._pending:
            raise ConfirmationRequiredError(f"Plan {validated.plan_id} is awaiting confirmation")
        assessment = self.gate.assess(validated)
        if assessment.requires_confirmation:
            return await self._suspend(validated, context, assessment)
        return await self._run(validated, context, transitions)

    async def approve(self, plan_id: str, approver_id: str) -> ExecutionResult:
        """Resume a plan parked in AwaitingConfirmation."""
        entry = self._pending.pop(plan_id, None)
        if entry is None:
            raise UnknownPlanError(plan_id)
        age = self._age_seconds(entry.confirmation)
        if age > self.config.confirmation_timeout_seconds:
            log.warning("plan %s: approval by %s arrived after timeout (%.0fs)", plan_id, approver_id, age)
            raise ConfirmationExpiredError(plan_id, age)

        # the registry may have changed while the plan was parked
        transitions = [State.CREATED, State.VALIDATING, State.AWAITING_CONFIRMATION, State.VALIDATING]
        validated = self.validator.validate(entry.validated.plan)
        log.info("plan %s approved by %s after %.0fs", plan_id, approver_id, age)
        return await self._run(validated, entry.context, transitions, approved_by=approver_id)

    async def reject(self, plan_id: str, reason: str = "") -> ExecutionResult:
        entry = self._pending.pop(plan_id, None)
        if entry is None:
            raise UnknownPlanError(plan_id)
        log.info("plan %s rejected: %s", plan_id, reason or "(no reason)")
        now = self.clock()
        result = ExecutionResult(
            plan_id=plan_id,
            overall_status=ExecutionStatus.FAILED,
            state=State.ABORTED,
            transitions=[State.CREATED, State.VALIDATING, State.AWAITING_CONFIRMATION, State.ABORTED],
            actor_id=entry.context.actor_id,
            abort_reason=reason or "rejected",
            started_at=now,
            finished_at=now,
        )
        await self.events.emit(EventType.PLAN_COMPLETED, plan_id, status=result.overall_status.value, state=result.state.value)
        return result

    def cancel(self, plan_id: str) -> bool:
        """Request cancellation of a running execution. Not-yet-started steps are skipped."""
        event = self._running.get(plan_id)
        if event is None:
            raise UnknownPlanError(plan_id)
        if event.is_set():
            return False
        log.info("plan %s: cancellation requested", plan_id)
        event.set()
        return True

    def pending(self) -> list[PendingConfirmation]:
        return [p.confirmation for p in self._pending.values()]

    def get_pending(self, plan_id: str) -> PendingConfirmation | None:
        entry = self._pending.get(plan_id)
        return entry.confirmation if entry else None

    def expire_pending(self) -> list[str]:
        """Drop confirmations older than the timeout; returns the expired plan ids."""
        expired = [
            plan_id
            for plan_id, entry in self._pending.items()
            if self._age_seconds(entry.confirmation) > self.config.confirmation_timeout_seconds
        ]
        for plan_id in expired:
            del self._pending[plan_id]
            log.info("plan %s: confirmation timed out", plan_id)
        return expired

    def restore_pending(self, confirmations: list[PendingConfirmation]) -> list[str]:
        """Re-park confirmations persisted by an earlier process; returns the restored plan ids.

        `requested_at` is kept, so the confirmation timeout still counts from the
        original request. Plans that no longer validate or whose content no
        longer matches the stored digest are dropped.
        """
        restored: list[str] = []
        for confirmation in confirmations:
            plan = confirmation.plan
            if plan.id in self._pending:
                continue
            if plan.digest() != confirmation.plan_digest:
                log.warning("plan %s: stored confirmation does not match its plan, not restored", plan.id)
                continue
            try:
                validated = self.validator.validate(plan)
            except PlanValidationError as e:
                log.warning("plan %s: no longer valid, not restored: %s", plan.id, e)
                continue
            context = ToolContext(
                actor_id=confirmation.actor_id or "unknown",
                granted_permissions=confirmation.granted_permissions,
            )
            self._pending[plan.id] = _Pending(confirmation=confirmation, validated=validated, context=context)
            restored.append(plan.id)
        if restored:
            log.info("restored %d pending confirmation(s): %s", len(restored), ", ".join(restored))
        return restored

    def is_running(self, plan_id: str) -> bool:
        return plan_id in self._running

    # -- internals ---------------------------------------------------------

    def _age_seconds(self, confirmation: PendingConfirmation) -> float:
        return (self.clock() - confirmation.requested_at).total_seconds()

    def _check_approval(self, token: ApprovalToken, plan: TaskPlan) -> None:
        if token.plan_id != plan.id:
            raise ApprovalMismatchError(f"Approval is for plan {token.plan_id}, not {plan.id}")
        if token.plan_digest != plan.digest():
            raise ApprovalMismatchError(f"Plan {plan.id} changed since it was approved")
        age = (self.clock() - token.issued_at).total_seconds()
        if age > self.config.confirmation_staleness_seconds:
            raise ConfirmationExpiredError(plan.id, age)

    async def _suspend(self, validated: ValidatedPlan, context: ToolContext, assessment: RiskAssessment) -> PendingConfirmation:
        confirmation = PendingConfirmation(
            plan=validated.plan,
            impact_summary=self.gate.impact_summary(validated, assessment),
            plan_digest=validated.plan.digest(),
            actor_id=context.actor_id,
            granted_permissions=list(context.granted_permissions),
            requested_at=self.clock(),
        )
        self._pending[validated.plan_id] = _Pending(confirmation=confirmation, validated=validated, context=context)
        await self.events.emit(
            EventType.PLAN_AWAITING_CONFIRMATION,
            validated.plan_id,
            reasons=assessment.reasons,
            risk_level=assessment.risk_level.value,
        )
        return confirmation

    async def _run(
        self,
        validated: ValidatedPlan,
        context: ToolContext,
        transitions: list[ExecutionState],
        approved_by: str | None = None,
    ) -> ExecutionResult:
        plan = validated.plan
        if plan.id in self._running:
            raise EngineError(f"Plan {plan.id} is already executing")
        cancel_event = asyncio.Event()
        self._running[plan.id] = cancel_event
        run_context = context.model_copy(update={"cancel_event": cancel_event})
        started_at = self.clock()

        transitions.append(State.SCHEDULED)
        batches = self.scheduler.order(validated)
        log.info("plan %s: %d step(s) in %d batch(es), actor %s", plan.id, len(plan.steps), len(batches), context.actor_id)
        transitions.append(State.EXECUTING)

        results = StepResultLog(plan.step_ids)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        critical_failure: StepResult | None = None
        try:
            for index, batch in enumerate(batches):
                if cancel_event.is_set():
                    break
                log.info("plan %s: batch %d/%d %s", plan.id, index + 1, len(batches), batch)
                await asyncio.gather(*(
                    self._run_step(validated.step(step_id), results, run_context, semaphore, plan.id)
                    for step_id in batch
                ))
                for step_id in batch:
                    result = results.get(step_id)
                    if result is not None and result.status == StepStatus.FAILED and validated.step(step_id).is_critical:
                        critical_failure = critical_failure or result
                if critical_failure is not None:
                    break
        finally:
            self._running.pop(plan.id, None)

        cancelled = cancel_event.is_set()
        if critical_failure is not None:
            skip_reason = f"aborted: critical step {critical_failure.step_id} failed"
        else:
            skip_reason = "execution cancelled"
        for step_id in validated.topological_order:
            if results.get(step_id) is None:
                await self._skip(validated.step(step_id), results, plan.id, skip_reason)

        rollback_result: RollbackResult | None = None
        abort_reason: str | None = None
        if critical_failure is not None:
            log.warning("plan %s: critical step %s failed, rolling back", plan.id, critical_failure.step_id)
            transitions += [State.PARTIALLY_FAILED, State.ROLLING_BACK]
            await self.events.emit(EventType.PLAN_ROLLING_BACK, plan.id, failed_step=critical_failure.step_id)
            rollback_result = await self.rollback.rollback(results.results(), validated, context)
            state, overall = State.ROLLED_BACK, ExecutionStatus.ROLLED_BACK
        elif cancelled:
            state, overall = State.ABORTED, ExecutionStatus.FAILED
            abort_reason = "cancelled"
        elif any(r.status == StepStatus.FAILED for r in results.results()):
            state, overall = State.PARTIALLY_FAILED, ExecutionStatus.SUCCEEDED
        else:
            state, overall = State.SUCCEEDED, ExecutionStatus.SUCCEEDED
        transitions.append(state)

        execution = ExecutionResult(
            plan_id=plan.id,
            overall_status=overall,
            state=state,
            steps=results.results(),
            rollback_result=rollback_result,
            transitions=transitions,
            actor_id=context.actor_id,
            approved_by=approved_by,
            abort_reason=abort_reason,
            started_at=started_at,
            finished_at=self.clock(),
        )
        log.info(
            "plan %s: %s (%s), %d step result(s)",
            plan.id,
            overall.value,
            state.value,
            len(execution.steps),
        )
        await self.events.emit(EventType.PLAN_COMPLETED, plan.id, status=overall.value, state=state.value)
        return execution

    async def _run_step(
        self,
        step: TaskStep,
        results: StepResultLog,
        context: ToolContext,
        semaphore: asyncio.Semaphore,
        plan_id: str,
    ) -> None:
        if context.cancelled:
            await self._skip(step, results, plan_id, "execution cancelled")
            return
        for dep in step.depends_on:
            dep_result = results.get(dep)
            if dep_result is None or dep_result.status != StepStatus.SUCCEEDED:
                await self._skip(step, results, plan_id, f"dependency {dep} did not succeed")
                return
        await self.events.emit(EventType.STEP_STARTED, plan_id, step.id, tool=step.tool_name)
        # slot is held per attempt, not across backoff
        result = await self.executor.execute(step, results.outputs(), context, plan_id=plan_id, slot=semaphore)
        results.record(result)
        if result.status == StepStatus.SUCCEEDED:
            await self.events.emit(EventType.STEP_COMPLETED, plan_id, step.id, attempts=result.attempts)
        else:
            await self.events.emit(
                EventType.STEP_FAILED,
                plan_id,
                step.id,
                attempts=result.attempts,
                error=result.error.message if result.error else None,
                critical=step.is_critical,
            )

    async def _skip(self, step: TaskStep, results: StepResultLog, plan_id: str, reason: str) -> None:
        now = self.clock()
        results.record(StepResult(
            step_id=step.id,
            tool_name=step.tool_name,
            status=StepStatus.SKIPPED,
            attempts=0,
            parameters=dict(step.parameters),
            skip_reason=reason,
            started_at=now,
            finished_at=now,
        ))
        log.info("⤼ %s %s: skipped (%s)", step.id, step.tool_name, reason)
        await self.events.emit(EventType.STEP_SKIPPED, plan_id, step.id, reason=reason)
