"""Persist and load executions, pending confirmations and audit records in app Postgres."""
from __future__ import annotations

import json
from typing import Any

import asyncpg

from src.core.contracts.events import AuditRecord
from src.core.contracts.plan import TaskPlan
from src.core.contracts.results import ExecutionResult, ImpactSummary, PendingConfirmation


def get_app_db_url(env: dict[str, str]) -> str:
    url = env.get("POSTGRES_APP_URL")
    if not url:
        raise ValueError("POSTGRES_APP_URL not set")
    return url.replace("postgresql+asyncpg://", "postgresql://")


def _json(value: Any) -> str:
    return json.dumps(value, default=str)


async def save_execution(conn: asyncpg.Connection, result: ExecutionResult) -> None:
    """Upsert the execution row and replace its step results, in one transaction."""
    rollback = result.rollback_result.model_dump(mode="json") if result.rollback_result else None
    async with conn.transaction():
        await conn.execute(
            """
            INSERT INTO app.executions
                (plan_id, actor_id, approved_by, overall_status, state, transitions, rollback_result,
                 abort_reason, started_at, finished_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8, $9, $10)
            ON CONFLICT (plan_id) DO UPDATE SET
                approved_by = EXCLUDED.approved_by,
                overall_status = EXCLUDED.overall_status,
                state = EXCLUDED.state,
                transitions = EXCLUDED.transitions,
                rollback_result = EXCLUDED.rollback_result,
                abort_reason = EXCLUDED.abort_reason,
                finished_at = EXCLUDED.finished_at
            """,
            result.plan_id,
            result.actor_id,
            result.approved_by,
            result.overall_status.value,
            result.state.value,
            _json([t.value for t in result.transitions]),
            _json(rollback) if rollback is not None else None,
            result.abort_reason,
            result.started_at,
            result.finished_at,
        )
        await conn.execute("DELETE FROM app.step_results WHERE plan_id = $1", result.plan_id)
        for seq, sr in enumerate(result.steps):
            await conn.execute(
                """
                INSERT INTO app.step_results
                    (plan_id, seq, step_id, tool_name, status, attempts, output_payload, error, latency_ms)
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb, $9)
                """,
                result.plan_id,
                seq,
                sr.step_id,
                sr.tool_name,
                sr.status.value,
                sr.attempts,
                _json(sr.output),
                _json(sr.error.model_dump()) if sr.error else None,
                sr.latency_ms,
            )
        await conn.execute(
            "UPDATE app.pending_confirmations SET status = $2, resolved_at = now() WHERE plan_id = $1 AND status = 'pending'",
            result.plan_id,
            "rejected" if result.abort_reason and not result.steps else "approved",
        )


async def save_pending(conn: asyncpg.Connection, pending: PendingConfirmation) -> None:
    await conn.execute(
        """
        INSERT INTO app.pending_confirmations
            (plan_id, actor_id, plan, impact_summary, plan_digest, granted_permissions, requested_at, status)
        VALUES ($1, $2, $3::jsonb, $4::jsonb, $5, $6::jsonb, $7, 'pending')
        ON CONFLICT (plan_id) DO NOTHING
        """,
        pending.plan_id,
        pending.actor_id,
        _json(pending.plan.model_dump(mode="json")),
        _json(pending.impact_summary.model_dump(mode="json")),
        pending.plan_digest,
        _json(pending.granted_permissions),
        pending.requested_at,
    )


def _loads(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


async def load_pending(conn: asyncpg.Connection) -> list[PendingConfirmation]:
    """Confirmations still awaiting a decision, oldest first."""
    rows = await conn.fetch(
        """
        SELECT plan_id, actor_id, plan, impact_summary, plan_digest, granted_permissions, requested_at
        FROM app.pending_confirmations WHERE status = 'pending' ORDER BY requested_at
        """
    )
    return [
        PendingConfirmation(
            plan=TaskPlan.model_validate(_loads(r["plan"])),
            impact_summary=ImpactSummary.model_validate(_loads(r["impact_summary"])),
            plan_digest=r["plan_digest"],
            actor_id=r["actor_id"],
            granted_permissions=_loads(r["granted_permissions"]) or [],
            requested_at=r["requested_at"],
        )
        for r in rows
    ]


async def mark_expired(conn: asyncpg.Connection, plan_ids: list[str]) -> None:
    if not plan_ids:
        return
    await conn.execute(
        "UPDATE app.pending_confirmations SET status = 'expired', resolved_at = now() "
        "WHERE plan_id = ANY($1::text[]) AND status = 'pending'",
        plan_ids,
    )


async def get_execution(conn: asyncpg.Connection, plan_id: str) -> dict[str, Any] | None:
    row = await conn.fetchrow(
        """
        SELECT plan_id, actor_id, approved_by, overall_status, state, transitions, rollback_result,
               abort_reason, started_at, finished_at
        FROM app.executions WHERE plan_id = $1
        """,
        plan_id,
    )
    if not row:
        return None
    out = dict(row)
    for key in ("transitions", "rollback_result"):
        if isinstance(out[key], str):
            out[key] = json.loads(out[key])
    for key in ("started_at", "finished_at"):
        out[key] = out[key].isoformat() if out[key] else None
    return out


async def get_step_results(conn: asyncpg.Connection, plan_id: str) -> list[dict[str, Any]]:
    """Load step results for an execution, in completion order."""
    rows = await conn.fetch(
        """
        SELECT step_id, tool_name, status, attempts, output_payload, error, latency_ms
        FROM app.step_results WHERE plan_id = $1 ORDER BY seq
        """,
        plan_id,
    )
    results = []
    for r in rows:
        item = dict(r)
        for key in ("output_payload", "error"):
            if isinstance(item[key], str):
                item[key] = json.loads(item[key])
        results.append(item)
    return results


class PostgresAuditSink:
    """Append-only audit log in app.audit_log; one short-lived connection per record."""

    def __init__(self, url: str):
        self.url = url.replace("postgresql+asyncpg://", "postgresql://")

    async def record(self, record: AuditRecord) -> None:
        conn = await asyncpg.connect(self.url)
        try:
            await conn.execute(
                """
                INSERT INTO app.audit_log
                    (ts, actor_id, tool_name, step_id, plan_id, parameters_sanitized, outcome, attempt, phase, error)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10)
                """,
                record.timestamp,
                record.actor_id,
                record.tool_name,
                record.step_id,
                record.plan_id,
                _json(record.parameters_sanitized),
                record.outcome.value,
                record.attempt,
                record.phase,
                record.error,
            )
        finally:
            await conn.close()
