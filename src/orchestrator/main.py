"""Orchestrator FastAPI app: submit plans, approve/reject/cancel them, read traces."""
from __future__ import annotations

import logging
import os

import asyncpg
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(message)s", datefmt="%H:%M:%S")
log = logging.getLogger("orchestrator")

from src.agent.agent import Agent
from src.core.contracts.api import ApproveRequest, ExecutePlanRequest, PlanResponse, RejectRequest
from src.core.contracts.results import ExecutionResult, PendingConfirmation
from src.core.exceptions import (
    ApprovalMismatchError,
    ConfirmationExpiredError,
    EngineError,
    PlanValidationError,
    UnknownPlanError,
)
from src.data_access.relational.postgres import dispose_engines
from src.engine.engine import ExecutionEngine
from src.orchestrator.deps import get_agents, get_app_db, get_config, get_engine, get_lms_db, get_registry
from src.orchestrator.session import (
    get_execution,
    get_step_results,
    load_pending,
    mark_expired,
    save_execution,
    save_pending,
)
from src.tools.lms.users import count_all_users
from src.tools.registry import ToolRegistry

app = FastAPI(title="Task Engine: Orchestrator")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


@app.on_event("startup")
async def startup():
    get_config()
    await restore_pending(get_engine(), get_app_db())


@app.on_event("shutdown")
async def shutdown():
    await dispose_engines()


@app.get("/health")
async def health(lms_db: str | None = Depends(get_lms_db)):
    """Liveness plus a round trip to the LMS database."""
    if not lms_db:
        return JSONResponse(status_code=500, content={"status": "error", "error": "LMS database not configured"})
    try:
        users = await count_all_users(lms_db)
    except Exception as e:
        log.exception("health check: LMS database unreachable")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error": "Database connection failed", "details": str(e)},
        )
    return {"status": "ok", "message": "LMS task engine is running", "db_users": users}


@app.get("/tools")
def list_tools(registry: ToolRegistry = Depends(get_registry)):
    return [t.describe() for t in registry.tools()]


@app.get("/agents")
def list_agents(agents: dict[str, Agent] = Depends(get_agents)):
    return [a.describe() for a in agents.values()]


def _validation_failed(plan_id: str, e: PlanValidationError) -> JSONResponse:
    body = PlanResponse(kind="validation_failed", plan_id=plan_id, error=e.details())
    return JSONResponse(status_code=422, content=body.model_dump(mode="json"))


async def restore_pending(engine: ExecutionEngine, db_url: str | None) -> list[str]:
    """Re-park confirmations saved before the last restart."""
    if not db_url:
        return []
    conn = await asyncpg.connect(db_url)
    try:
        confirmations = await load_pending(conn)
    finally:
        await conn.close()
    return engine.restore_pending(confirmations)


async def _expire(db_url: str | None, plan_ids: list[str]) -> None:
    if not db_url or not plan_ids:
        return
    conn = await asyncpg.connect(db_url)
    try:
        await mark_expired(conn, plan_ids)
    except Exception:
        log.exception("Marking %s expired failed", ", ".join(plan_ids))
    finally:
        await conn.close()


async def _persist(db_url: str | None, outcome: ExecutionResult | PendingConfirmation) -> None:
    if not db_url:
        return
    conn = await asyncpg.connect(db_url)
    try:
        if isinstance(outcome, PendingConfirmation):
            await save_pending(conn, outcome)
        else:
            await save_execution(conn, outcome)
    except Exception:
        log.exception("Persisting %s failed", outcome.plan_id)
    finally:
        await conn.close()


@app.post("/plans", response_model=PlanResponse)
async def submit_plan(
    req: ExecutePlanRequest,
    engine: ExecutionEngine = Depends(get_engine),
    db_url: str | None = Depends(get_app_db),
):
    plan = req.plan
    log.info("PLAN %s from %s: %d step(s)", plan.id, req.actor_id, len(plan.steps))
    try:
        outcome = await engine.execute(plan, req.to_context())
    except PlanValidationError as e:
        return _validation_failed(plan.id, e)
    except EngineError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await _persist(db_url, outcome)
    return PlanResponse.from_outcome(outcome)


@app.get("/plans/pending", response_model=list[PendingConfirmation])
async def pending_plans(
    engine: ExecutionEngine = Depends(get_engine),
    db_url: str | None = Depends(get_app_db),
):
    await _expire(db_url, engine.expire_pending())
    return engine.pending()


@app.post("/plans/{plan_id}/approve", response_model=PlanResponse)
async def approve_plan(
    plan_id: str,
    req: ApproveRequest,
    engine: ExecutionEngine = Depends(get_engine),
    db_url: str | None = Depends(get_app_db),
):
    try:
        result = await engine.approve(plan_id, req.approver_id)
    except UnknownPlanError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PlanValidationError as e:
        return _validation_failed(plan_id, e)
    except ConfirmationExpiredError as e:
        await _expire(db_url, [plan_id])
        raise HTTPException(status_code=409, detail=str(e))
    except ApprovalMismatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await _persist(db_url, result)
    return PlanResponse.from_outcome(result)


@app.post("/plans/{plan_id}/reject", response_model=PlanResponse)
async def reject_plan(
    plan_id: str,
    req: RejectRequest,
    engine: ExecutionEngine = Depends(get_engine),
    db_url: str | None = Depends(get_app_db),
):
    try:
        result = await engine.reject(plan_id, req.reason)
    except UnknownPlanError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await _persist(db_url, result)
    return PlanResponse.from_outcome(result)


@app.post("/plans/{plan_id}/cancel")
async def cancel_plan(plan_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        cancelled = engine.cancel(plan_id)
    except UnknownPlanError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"plan_id": plan_id, "cancelled": cancelled}


@app.get("/executions/{plan_id}")
async def get_execution_trace(plan_id: str, db_url: str | None = Depends(get_app_db)):
    """Persisted trace: execution row plus step results in completion order."""
    if not db_url:
        raise HTTPException(status_code=500, detail="POSTGRES_APP_URL not set")
    conn = await asyncpg.connect(db_url)
    try:
        execution = await get_execution(conn, plan_id)
        if not execution:
            raise HTTPException(status_code=404, detail="Execution not found")
        steps = await get_step_results(conn, plan_id)
    finally:
        await conn.close()
    return {**execution, "steps": steps}


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
