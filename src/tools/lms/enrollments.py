from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import text

from src.core.contracts.tool import ParameterSpec, Tool, ToolCategory, ToolContext
from src.data_access.relational.postgres import get_session


def create_enrollment_tools(pg_url: str, key: str = "lms_db") -> list[Tool]:

    async def enroll_students(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        course_id = params["course_id"]
        enrolled: list[str] = []
        async with get_session(pg_url, key=key) as session:
            for user_id in params["user_ids"]:
                if context.cancelled:
                    break
                res = await session.execute(
                    text(
                        'INSERT INTO "Enrollment" (id, "userId", "courseId") VALUES (:id, :user_id, :course_id) '
                        'ON CONFLICT ("userId", "courseId") DO NOTHING RETURNING "userId"'
                    ),
                    {"id": uuid.uuid4().hex, "user_id": user_id, "course_id": course_id},
                )
                row = res.first()
                if row is not None:
                    enrolled.append(row[0])
        # only newly created enrollments are reported, so compensation never removes pre-existing ones
        return {"course_id": course_id, "enrolled_user_ids": enrolled}

    async def unenroll_students(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        user_ids = list(params["user_ids"])
        if not user_ids:
            return {"course_id": params["course_id"], "removed": 0}
        async with get_session(pg_url, key=key) as session:
            res = await session.execute(
                text('DELETE FROM "Enrollment" WHERE "courseId" = :course_id AND "userId" = ANY(:user_ids)'),
                {"course_id": params["course_id"], "user_ids": user_ids},
            )
        return {"course_id": params["course_id"], "removed": res.rowcount or 0}

    schema = {
        "course_id": ParameterSpec(type="string", required=True),
        "user_ids": ParameterSpec(type="array", required=True),
    }
    return [
        Tool(
            name="enroll_students",
            handler=enroll_students,
            description="Enroll a list of users into a course.",
            parameter_schema=schema,
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
            handler=unenroll_students,
            description="Remove a list of users from a course.",
            parameter_schema=schema,
            required_permission="enrollment:write",
            category=ToolCategory.DELETE,
        ),
    ]
