from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import text

from src.core.contracts.tool import ParameterSpec, Tool, ToolCategory, ToolContext
from src.data_access.relational.postgres import get_session


def create_course_tools(pg_url: str, key: str = "lms_db") -> list[Tool]:
    """Course lifecycle tools. Every forward write declares its compensator."""

    async def create_course(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        course_id = uuid.uuid4().hex
        async with get_session(pg_url, key=key) as session:
            await session.execute(
                text(
                    'INSERT INTO "Course" (id, title, description, category, "instructorId", "updatedAt") '
                    "VALUES (:id, :title, :description, :category, :instructor_id, now())"
                ),
                {
                    "id": course_id,
                    "title": params["title"],
                    "description": params.get("description"),
                    "category": params.get("category"),
                    "instructor_id": params.get("instructor_id"),
                },
            )
        return {"course_id": course_id, "title": params["title"]}

    async def delete_course(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        # Deleting an already-deleted course is a no-op, which keeps rollback idempotent.
        course_id = params["course_id"]
        async with get_session(pg_url, key=key) as session:
            await session.execute(
                text(
                    'DELETE FROM "Content" WHERE "moduleId" IN '
                    '(SELECT id FROM "Module" WHERE "courseId" = :course_id)'
                ),
                {"course_id": course_id},
            )
            await session.execute(text('DELETE FROM "Module" WHERE "courseId" = :course_id'), {"course_id": course_id})
            await session.execute(text('DELETE FROM "Enrollment" WHERE "courseId" = :course_id'), {"course_id": course_id})
            res = await session.execute(text('DELETE FROM "Course" WHERE id = :course_id'), {"course_id": course_id})
        return {"course_id": course_id, "deleted": (res.rowcount or 0) > 0}

    async def set_archived(course_id: str, archived: bool) -> dict[str, Any]:
        async with get_session(pg_url, key=key) as session:
            res = await session.execute(
                text('UPDATE "Course" SET "isArchived" = :archived, "updatedAt" = now() WHERE id = :course_id'),
                {"course_id": course_id, "archived": archived},
            )
        if not res.rowcount:
            raise LookupError(f"Course not found: {course_id}")
        return {"course_id": course_id, "is_archived": archived}

    async def archive_course(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        return await set_archived(params["course_id"], True)

    async def unarchive_course(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        return await set_archived(params["course_id"], False)

    course_id_param = {"course_id": ParameterSpec(type="string", required=True)}
    return [
        Tool(
            name="create_course",
            handler=create_course,
            description="Create a course and return its id.",
            parameter_schema={
                "title": ParameterSpec(type="string", required=True),
                "description": ParameterSpec(type="string"),
                "category": ParameterSpec(type="string"),
                "instructor_id": ParameterSpec(type="string"),
            },
            required_permission="course:write",
            reversible=True,
            compensating_tool="delete_course",
            compensation_parameters={"course_id": "output.course_id"},
            category=ToolCategory.WRITE,
        ),
        Tool(
            name="delete_course",
            handler=delete_course,
            description="Delete a course with its modules, content and enrollments.",
            parameter_schema=course_id_param,
            required_permission="course:delete",
            category=ToolCategory.DELETE,
        ),
        Tool(
            name="archive_course",
            handler=archive_course,
            description="Hide a course from students without deleting it.",
            parameter_schema=course_id_param,
            required_permission="course:write",
            reversible=True,
            compensating_tool="unarchive_course",
            compensation_parameters={"course_id": "parameters.course_id"},
            category=ToolCategory.WRITE,
        ),
        Tool(
            name="unarchive_course",
            handler=unarchive_course,
            parameter_schema=course_id_param,
            required_permission="course:write",
            category=ToolCategory.WRITE,
        ),
    ]
