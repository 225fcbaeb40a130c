"""Run one plan step against its tool: resolve references, check permission, retry, audit."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import nullcontext
from typing import Any

from src.core.clock import elapsed_ms, utc_now
from src.core.config.models import EngineConfig
from src.core.contracts.events import AuditOutcome, AuditRecord
from src.core.contracts.plan import TaskStep
from src.core.contracts.results import StepError, StepResult, StepStatus
from src.core.contracts.tool import Tool, ToolContext, ToolOutcome
from src.core.exceptions import (
    ReferenceResolutionError,
    StepTimeoutError,
    ToolExecutionError,
    ToolPermissionError,
)
from src.engine.audit import AuditSink, LoggingAuditSink
from src.engine.references import resolve_parameters, sanitize
from src.tools.registry import ToolRegistry

log = logging.getLogger("step_executor")

Sleep = Callable[[float], Awaitable[Any]]


def _preview(value: Any, limit: int = 150) -> str:
    s = str(value)
    return (s[:limit] + "…") if len(s) > limit else s


def _error_type(error: Exception) -> str:
    if isinstance(error, StepTimeoutError):
        return "timeout"
    if isinstance(error, ToolPermissionError):
        return "permission_denied"
    if isinstance(error, ReferenceResolutionError):
        return "reference"
    return "tool_execution"


class StepExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        audit_sink: AuditSink | None = None,
        config: EngineConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.registry = registry
        self.audit_sink = audit_sink if audit_sink is not None else LoggingAuditSink()
        self.config = config if config is not None else EngineConfig()
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt: base, 2*base, 4*base, ..."""
        return self.config.backoff_base_seconds * (2 ** (attempt - 1))

    async def execute(
        self,
        step: TaskStep,
        prior_outputs: Mapping[str, Any],
        context: ToolContext,
        plan_id: str | None = None,
        slot: asyncio.Semaphore | None = None,
    ) -> StepResult:
        """Run one step to a final StepResult.

        `slot` bounds concurrent tool calls across a batch. It is held for each
        attempt only, never across a backoff sleep.
        """
        tool = self.registry.lookup(step.tool_name)
        limiter = slot if slot is not None else nullcontext()
        started_at = utc_now()
        start = time.perf_counter()

        def finish(status: StepStatus, attempts: int, parameters: dict, output: Any = None, error: Exception | None = None) -> StepResult:
            latency_ms = elapsed_ms(start)
            if error is None:
                log.info("← %s %s: %s (%s ms)", step.id, tool.name, _preview(output), latency_ms)
            else:
                log.warning("← %s %s: failed after %s attempt(s): %s (%s ms)", step.id, tool.name, attempts, error, latency_ms)
            return StepResult(
                step_id=step.id,
                tool_name=tool.name,
                status=status,
                output=output,
                error=StepError(type=_error_type(error), message=str(error)) if error is not None else None,
                attempts=attempts,
                parameters=parameters,
                started_at=started_at,
                finished_at=utc_now(),
                latency_ms=latency_ms,
            )

        try:
            parameters = resolve_parameters(step.parameters, prior_outputs)
        except ReferenceResolutionError as e:
            return finish(StepStatus.FAILED, 1, dict(step.parameters), error=e)

        sanitized = sanitize(parameters, self.config.max_audit_value_length)
        log.info("→ %s %s: %s", step.id, tool.name, _preview(sanitized, 100))

        if not context.has_permission(tool.required_permission):
            error = ToolPermissionError(tool.name, tool.required_permission or "", context.actor_id)
            await self._audit(tool, step.id, plan_id, context, sanitized, AuditOutcome.DENIED, 1, error)
            return finish(StepStatus.FAILED, 1, parameters, error=error)

        max_attempts = self.config.effective_max_attempts if step.retryable else 1
        attempt = 0
        last_error: Exception | None = None
        while attempt < max_attempts:
            attempt += 1
            try:
                async with limiter:
                    outcome = await self._invoke(tool, parameters, context)
            except (ToolExecutionError, ToolPermissionError) as e:
                last_error = e
            else:
                if outcome.success:
                    await self._audit(tool, step.id, plan_id, context, sanitized, AuditOutcome.SUCCEEDED, attempt)
                    return finish(StepStatus.SUCCEEDED, attempt, parameters, output=outcome.data)
                last_error = ToolExecutionError(outcome.error or "tool reported failure", tool_name=tool.name)

            outcome_kind = AuditOutcome.TIMEOUT if isinstance(last_error, StepTimeoutError) else AuditOutcome.FAILED
            if isinstance(last_error, ToolPermissionError):
                outcome_kind = AuditOutcome.DENIED
            await self._audit(tool, step.id, plan_id, context, sanitized, outcome_kind, attempt, last_error)

            retryable = isinstance(last_error, ToolExecutionError) and last_error.retryable
            if not retryable or attempt >= max_attempts or context.cancelled:
                break
            delay = self.backoff_delay(attempt)
            log.info("↻ %s %s: attempt %s failed (%s), retrying in %.2fs", step.id, tool.name, attempt, last_error, delay)
            await self._sleep(delay)

        return finish(StepStatus.FAILED, attempt, parameters, error=last_error)

    async def compensate(
        self,
        tool: Tool,
        parameters: dict[str, Any],
        context: ToolContext,
        step_id: str,
        plan_id: str | None = None,
    ) -> ToolOutcome:
        """Single audited call of a compensating tool. Failures come back as a failed outcome."""
        sanitized = sanitize(parameters, self.config.max_audit_value_length)
        if not context.has_permission(tool.required_permission):
            error = ToolPermissionError(tool.name, tool.required_permission or "", context.actor_id)
            await self._audit(tool, step_id, plan_id, context, sanitized, AuditOutcome.DENIED, 1, error, phase="rollback")
            return ToolOutcome.fail(str(error))
        try:
            outcome = await self._invoke(tool, parameters, context)
        except (ToolExecutionError, ToolPermissionError) as e:
            outcome = ToolOutcome.fail(str(e))
            kind = AuditOutcome.TIMEOUT if isinstance(e, StepTimeoutError) else AuditOutcome.FAILED
            await self._audit(tool, step_id, plan_id, context, sanitized, kind, 1, e, phase="rollback")
            return outcome
        kind = AuditOutcome.SUCCEEDED if outcome.success else AuditOutcome.FAILED
        error = None if outcome.success else ToolExecutionError(outcome.error or "tool reported failure")
        await self._audit(tool, step_id, plan_id, context, sanitized, kind, 1, error, phase="rollback")
        return outcome

    async def _invoke(self, tool: Tool, parameters: dict[str, Any], context: ToolContext) -> ToolOutcome:
        timeout = tool.timeout_seconds or self.config.step_timeout_seconds
        try:
            if timeout:
                return await asyncio.wait_for(tool.apply(parameters, context), timeout)
            return await tool.apply(parameters, context)
        except asyncio.TimeoutError:
            raise StepTimeoutError(tool.name, timeout) from None
        except (ToolExecutionError, ToolPermissionError):
            raise
        except Exception as e:
            raise ToolExecutionError(f"{type(e).__name__}: {e}", tool_name=tool.name) from e

    async def _audit(
        self,
        tool: Tool,
        step_id: str,
        plan_id: str | None,
        context: ToolContext,
        sanitized: dict[str, Any],
        outcome: AuditOutcome,
        attempt: int,
        error: Exception | None = None,
        phase: str = "execute",
    ) -> None:
        record = AuditRecord(
            actor_id=context.actor_id,
            tool_name=tool.name,
            step_id=step_id,
            plan_id=plan_id,
            parameters_sanitized=sanitized,
            outcome=outcome,
            attempt=attempt,
            phase=phase,
            error=str(error) if error is not None else None,
        )
        try:
            await self.audit_sink.record(record)
        except Exception:
            log.exception("audit sink rejected record for %s/%s", step_id, tool.name)
