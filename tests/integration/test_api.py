"""Orchestrator HTTP API against an in-memory engine.

Startup hooks are not run (no ``with TestClient``); every dependency that would
touch config or Postgres is overridden.
"""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.agent.agent import Agent
from src.core.contracts.plan import TaskPlan
from src.orchestrator import deps, main
from src.orchestrator.main import app, restore_pending


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client(engine, registry):
    agents = {"course_agent": Agent("course_agent", engine, registry, ["create_course", "delete_course"])}
    app.dependency_overrides[deps.get_engine] = lambda: engine
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_agents] = lambda: agents
    app.dependency_overrides[deps.get_app_db] = lambda: None
    app.dependency_overrides[deps.get_lms_db] = lambda: "postgresql://lms"
    yield TestClient(app)
    app.dependency_overrides.clear()


def _submit(client, plan: dict, actor: str = "admin-1", perms=("*",)):
    return client.post("/plans", json={"plan": plan, "actor_id": actor, "granted_permissions": list(perms)})


COURSE_PLAN = {
    "id": "plan-course",
    "steps": [
        {"id": "s1", "tool": "create_course", "parameters": {"title": "Databases"}},
        {
            "id": "s2",
            "tool": "enroll_students",
            "deps": ["s1"],
            "parameters": {"course_id": {"$ref": "s1.course_id"}, "user_ids": ["u1"]},
        },
    ],
}

DELETE_PLAN = {"id": "plan-delete", "steps": [{"id": "s1", "tool": "delete_course", "parameters": {"course_id": "c1"}}]}


# =============================================================================
# Tests
# =============================================================================


class TestDiscovery:
    def test_health_counts_lms_users(self, client, monkeypatch) -> None:
        counter = AsyncMock(return_value=12)
        monkeypatch.setattr(main, "count_all_users", counter)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["db_users"] == 12
        counter.assert_awaited_once_with("postgresql://lms")

    def test_health_reports_database_failure(self, client, monkeypatch) -> None:
        monkeypatch.setattr(main, "count_all_users", AsyncMock(side_effect=OSError("connection refused")))
        response = client.get("/health")
        assert response.status_code == 500
        assert response.json()["error"] == "Database connection failed"
        assert "connection refused" in response.json()["details"]

    def test_health_without_lms_database(self, client) -> None:
        app.dependency_overrides[deps.get_lms_db] = lambda: None
        assert client.get("/health").status_code == 500

    def test_tools(self, client) -> None:
        names = {t["name"] for t in client.get("/tools").json()}
        assert {"create_course", "delete_course", "enroll_students"} <= names

    def test_agents(self, client) -> None:
        body = client.get("/agents").json()
        assert body == [{"name": "course_agent", "description": "", "tools": ["create_course", "delete_course"]}]


class TestSubmitPlan:
    def test_successful_plan(self, client, lms) -> None:
        response = _submit(client, COURSE_PLAN)
        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "succeeded"
        assert body["result"]["overall_status"] == "succeeded"
        assert [s["status"] for s in body["result"]["steps"]] == ["succeeded", "succeeded"]
        assert ("u1", "c1") in lms.enrollments

    def test_validation_failure_is_structured(self, client, lms) -> None:
        plan = {"id": "bad", "steps": [{"id": "s1", "tool": "launch_rocket"}]}
        response = _submit(client, plan)
        assert response.status_code == 422
        body = response.json()
        assert body["kind"] == "validation_failed"
        assert body["error"]["code"] == "unknown_tool"
        assert body["error"]["step_id"] == "s1"
        assert lms.calls == []

    def test_rolled_back_plan(self, client, lms) -> None:
        lms.fail("enroll_students")
        body = _submit(client, COURSE_PLAN).json()
        assert body["kind"] == "rolled_back"
        assert body["result"]["overall_status"] == "rolledBack"
        assert body["result"]["rollback_result"]["entries"][0]["status"] == "compensated"

    def test_malformed_request(self, client) -> None:
        assert client.post("/plans", json={"plan": COURSE_PLAN}).status_code == 422


class TestConfirmationFlow:
    def test_pending_then_approve(self, client, lms) -> None:
        lms.courses["c1"] = {"title": "Old", "archived": False}
        body = _submit(client, DELETE_PLAN).json()
        assert body["kind"] == "awaiting_confirmation"
        assert body["pending"]["impact_summary"]["destructive_steps"] == ["s1"]
        assert [p["plan"]["id"] for p in client.get("/plans/pending").json()] == ["plan-delete"]

        approved = client.post("/plans/plan-delete/approve", json={"approver_id": "admin-2"})
        assert approved.status_code == 200
        assert approved.json()["result"]["approved_by"] == "admin-2"
        assert "c1" not in lms.courses

        again = client.post("/plans/plan-delete/approve", json={"approver_id": "admin-2"})
        assert again.status_code == 404

    def test_reject(self, client, lms) -> None:
        _submit(client, DELETE_PLAN)
        response = client.post("/plans/plan-delete/reject", json={"reason": "not now"})
        assert response.json()["kind"] == "aborted"
        assert response.json()["result"]["abort_reason"] == "not now"
        assert client.get("/plans/pending").json() == []

    def test_expired_approval_conflicts(self, client, engine, clock) -> None:
        _submit(client, DELETE_PLAN)
        clock.advance(engine.config.confirmation_timeout_seconds + 1)
        response = client.post("/plans/plan-delete/approve", json={"approver_id": "admin-2"})
        assert response.status_code == 409

    def test_resubmitting_pending_plan_conflicts(self, client) -> None:
        _submit(client, DELETE_PLAN)
        assert _submit(client, DELETE_PLAN).status_code == 409


class TestOtherEndpoints:
    def test_cancel_unknown_plan(self, client) -> None:
        assert client.post("/plans/nope/cancel").status_code == 404

    def test_execution_trace_needs_database(self, client) -> None:
        assert client.get("/executions/plan-course").status_code == 500


class TestRestart:
    async def test_parked_plan_can_be_approved_after_restart(self, client, engine, lms, clock, monkeypatch) -> None:
        lms.courses["c1"] = {"title": "Old", "archived": False}
        row = {
            "plan_id": "plan-delete",
            "actor_id": "admin-1",
            "plan": json.dumps(DELETE_PLAN),
            "impact_summary": json.dumps({"risk_level": "high", "step_count": 1, "destructive_steps": ["s1"]}),
            "plan_digest": TaskPlan.model_validate(DELETE_PLAN).digest(),
            "granted_permissions": json.dumps(["*"]),
            "requested_at": clock(),
        }
        conn = AsyncMock()
        conn.fetch.return_value = [row]
        monkeypatch.setattr(main.asyncpg, "connect", AsyncMock(return_value=conn))

        assert await restore_pending(engine, "postgresql://app") == ["plan-delete"]
        conn.close.assert_awaited_once()

        approved = client.post("/plans/plan-delete/approve", json={"approver_id": "admin-2"})
        assert approved.status_code == 200
        assert approved.json()["result"]["actor_id"] == "admin-1"
        assert "c1" not in lms.courses

    async def test_restore_without_app_database(self, engine) -> None:
        assert await restore_pending(engine, None) == []
