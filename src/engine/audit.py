"""Audit sinks: append-only receivers of one record per tool invocation attempt."""
from __future__ import annotations

import logging
from typing import Protocol

from src.core.contracts.events import AuditRecord

log = logging.getLogger("audit")


class AuditSink(Protocol):
    async def record(self, record: AuditRecord) -> None: ...


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def record(self, record: AuditRecord) -> None:
        self.records.append(record)

    def for_plan(self, plan_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.plan_id == plan_id]

    def __len__(self) -> int:
        return len(self.records)


class LoggingAuditSink:
    async def record(self, record: AuditRecord) -> None:
        log.info(
            "%s %s step=%s actor=%s attempt=%s outcome=%s params=%s",
            record.phase,
            record.tool_name,
            record.step_id,
            record.actor_id,
            record.attempt,
            record.outcome.value,
            record.parameters_sanitized,
        )


class FanOutAuditSink:
    """Forward every record to several sinks, in order."""

    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    async def record(self, record: AuditRecord) -> None:
        for sink in self.sinks:
            await sink.record(record)
