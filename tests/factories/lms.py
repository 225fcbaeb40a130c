"""In-memory LMS whose tools behave like the Postgres-backed ones, plus test helpers."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any

from src.core.clock import utc_now
from src.core.contracts.plan import TaskPlan
from src.core.contracts.tool import ParameterSpec, Tool, ToolCategory, ToolContext, ToolOutcome

ALWAYS = -1


class FakeLms:
    """Courses and enrollments in dicts, with switchable failures per tool."""

    def __init__(self) -> None:
        self.courses: dict[str, dict[str, Any]] = {}
        self.enrollments: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, int] = {}
        self._next_id = 0

    def fail(self, tool_name: str, times: int = ALWAYS) -> None:
        self.failures[tool_name] = times

    def calls_to(self, tool_name: str) -> list[dict[str, Any]]:
        return [params for name, params in self.calls if name == tool_name]

    def _enter(self, name: str, params: dict[str, Any]) -> None:
        self.calls.append((name, dict(params)))
        remaining = self.failures.get(name, 0)
        if remaining == ALWAYS:
            raise RuntimeError(f"{name} unavailable")
        if remaining > 0:
            self.failures[name] = remaining - 1
            raise RuntimeError(f"{name} unavailable")

    async def create_course(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self._enter("create_course", params)
        self._next_id += 1
        course_id = f"c{self._next_id}"
        self.courses[course_id] = {"title": params["title"], "archived": False}
        return {"course_id": course_id}

    async def delete_course(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self._enter("delete_course", params)
        existed = self.courses.pop(params["course_id"], None) is not None
        self.enrollments = {e for e in self.enrollments if e[1] != params["course_id"]}
        return {"deleted": existed}

    async def enroll_students(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self._enter("enroll_students", params)
        if params["course_id"] not in self.courses:
            return ToolOutcome.fail(f"no course {params['course_id']}")
        enrolled = []
        for user_id in params["user_ids"]:
            key = (user_id, params["course_id"])
            if key not in self.enrollments:
                self.enrollments.add(key)
                enrolled.append(user_id)
        return {"course_id": params["course_id"], "enrolled_user_ids": enrolled}

    async def unenroll_students(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self._enter("unenroll_students", params)
        before = len(self.enrollments)
        self.enrollments -= {(u, params["course_id"]) for u in params["user_ids"]}
        return {"removed": before - len(self.enrollments)}

    def send_notice(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        # sync handler on purpose
        self._enter("send_notice", params)
        return {"sent": True}

    async def purge_inactive(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self._enter("purge_inactive", params)
        return {"purged": 0}

    def tools(self) -> list[Tool]:
        course_id = {"course_id": ParameterSpec(type="string", required=True)}
        enroll_schema = {
            "course_id": ParameterSpec(type="string", required=True),
            "user_ids": ParameterSpec(type="array", required=True),
        }
        return [
            Tool(
                name="create_course",
                handler=self.create_course,
                parameter_schema={
                    "title": ParameterSpec(type="string", required=True),
                    "level": ParameterSpec(type="string", allowed_values=["intro", "advanced"]),
                },
                required_permission="course:write",
                reversible=True,
                compensating_tool="delete_course",
                compensation_parameters={"course_id": "output.course_id"},
                category=ToolCategory.WRITE,
            ),
            Tool(
                name="delete_course",
                handler=self.delete_course,
                parameter_schema=course_id,
                required_permission="course:delete",
                category=ToolCategory.DELETE,
            ),
            Tool(
                name="enroll_students",
                handler=self.enroll_students,
                parameter_schema=enroll_schema,
                required_permission="enrollment:write",
                reversible=True,
                compensating_tool="unenroll_students",
                compensation_parameters={
                    "course_id": "parameters.course_id",
                    "user_ids": "output.enrolled_user_ids",
                },
                category=ToolCategory.WRITE,
            ),
            Tool(
                name="unenroll_students",
                handler=self.unenroll_students,
                parameter_schema=enroll_schema,
                required_permission="enrollment:write",
                category=ToolCategory.DELETE,
            ),
            Tool(
                name="send_notice",
                handler=self.send_notice,
                parameter_schema={"message": ParameterSpec(type="string", required=True)},
                category=ToolCategory.WRITE,
            ),
            # no category: destructiveness comes from the name
            Tool(name="purge_inactive", handler=self.purge_inactive),
        ]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_plan(*steps: dict[str, Any], plan_id: str = "plan-1", **fields: Any) -> TaskPlan:
    return TaskPlan.model_validate({"id": plan_id, "steps": list(steps), **fields})


def step(step_id: str, tool: str, deps: list[str] | None = None, **parameters: Any) -> dict[str, Any]:
    return {"id": step_id, "tool": tool, "deps": deps or [], "parameters": parameters}


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)
