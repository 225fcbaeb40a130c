"""Tests for domain agents over the shared engine."""

import pytest

from src.agent.agent import Agent, build_agents
from src.core.config.models import AgentConfig, DomainConfig
from src.core.contracts.plan import Intent
from src.core.contracts.results import ExecutionStatus, PendingConfirmation
from tests.factories.lms import make_plan, step


@pytest.fixture
def course_agent(engine, registry) -> Agent:
    return Agent("course_agent", engine, registry, ["create_course", "delete_course"], "Course admin")


class TestAgent:
    def test_tools_scoped_to_domain(self, course_agent) -> None:
        assert [t.name for t in course_agent.tools()] == ["create_course", "delete_course"]
        assert course_agent.owns("create_course")
        assert not course_agent.owns("enroll_students")

    def test_describe(self, course_agent) -> None:
        assert course_agent.describe() == {
            "name": "course_agent",
            "description": "Course admin",
            "tools": ["create_course", "delete_course"],
        }

    async def test_run_cross_domain_plan(self, course_agent, admin, course_plan, lms) -> None:
        # enroll_students belongs to another agent but resolves through the shared registry
        result = await course_agent.run(course_plan, admin)
        assert result.overall_status == ExecutionStatus.SUCCEEDED
        assert lms.enrollments == {("u1", "c1"), ("u2", "c1")}

    async def test_handle_with_sync_planner(self, course_agent, admin, lms) -> None:
        seen_tools: list[str] = []

        def planner(intent, tools):
            seen_tools.extend(t.name for t in tools)
            return make_plan(step("s1", "create_course", title=intent.parameters["title"]))

        result = await course_agent.handle(Intent(action="create_course", parameters={"title": "DB"}), planner, admin)
        assert result.overall_status == ExecutionStatus.SUCCEEDED
        assert seen_tools == ["create_course", "delete_course"]
        assert lms.courses["c1"]["title"] == "DB"

    async def test_handle_with_async_planner_needing_confirmation(self, course_agent, admin, lms) -> None:
        lms.courses["c1"] = {"title": "Old", "archived": False}

        async def planner(intent, tools):
            return make_plan(step("s1", "delete_course", course_id=intent.parameters["course_id"]))

        outcome = await course_agent.handle(Intent(action="delete_course", parameters={"course_id": "c1"}), planner, admin)
        assert isinstance(outcome, PendingConfirmation)
        assert "c1" in lms.courses


class TestBuildAgents:
    def test_builds_one_agent_per_config_entry(self, engine, registry) -> None:
        config = DomainConfig(
            domain_id="lms",
            domain_name="LMS",
            agents=[
                AgentConfig(name="course_agent", tool_names=["create_course"]),
                AgentConfig(name="ghost_agent", tool_names=["not_registered"]),
            ],
        )
        agents = build_agents(config, engine, registry)
        assert set(agents) == {"course_agent", "ghost_agent"}
        assert agents["course_agent"].engine is engine
        assert agents["ghost_agent"].tools() == []
