from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import text

from src.core.contracts.tool import ParameterSpec, Tool, ToolCategory, ToolContext
from src.data_access.relational.postgres import get_session

ROLES = [
    "STUDENT",
    "INSTRUCTOR",
    "ADMIN",
    "SYSTEM_ADMIN",
    "CONTENT_ADMIN",
    "ANALYTICS_ADMIN",
    "SUPPORT_ADMIN",
]


async def count_all_users(pg_url: str, key: str = "lms_db") -> int:
    """Total users; also the service health check against the LMS database."""
    async with get_session(pg_url, key=key) as session:
        res = await session.execute(text('SELECT count(*) FROM "User"'))
        return int(res.scalar_one())


def create_user_tools(pg_url: str, key: str = "lms_db") -> list[Tool]:

    async def create_user(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        user_id = uuid.uuid4().hex
        async with get_session(pg_url, key=key) as session:
            await session.execute(
                text(
                    'INSERT INTO "User" (id, email, name, role, "updatedAt") '
                    'VALUES (:id, :email, :name, CAST(:role AS "Role"), now())'
                ),
                {
                    "id": user_id,
                    "email": params["email"],
                    "name": params.get("name"),
                    "role": params.get("role", "STUDENT"),
                },
            )
        return {"user_id": user_id}

    async def delete_user(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        user_id = params["user_id"]
        async with get_session(pg_url, key=key) as session:
            await session.execute(text('DELETE FROM "Enrollment" WHERE "userId" = :user_id'), {"user_id": user_id})
            await session.execute(text('UPDATE "Course" SET "instructorId" = NULL WHERE "instructorId" = :user_id'), {"user_id": user_id})
            res = await session.execute(text('DELETE FROM "User" WHERE id = :user_id'), {"user_id": user_id})
        return {"user_id": user_id, "deleted": (res.rowcount or 0) > 0}

    async def count_users(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        role = params.get("role")
        if not role:
            return {"count": await count_all_users(pg_url, key=key), "role": None}
        async with get_session(pg_url, key=key) as session:
            res = await session.execute(
                text('SELECT count(*) FROM "User" WHERE role = CAST(:role AS "Role")'), {"role": role}
            )
            count = res.scalar_one()
        return {"count": int(count), "role": role}

    return [
        Tool(
            name="create_user",
            handler=create_user,
            parameter_schema={
                "email": ParameterSpec(type="string", required=True),
                "name": ParameterSpec(type="string"),
                "role": ParameterSpec(type="string", allowed_values=ROLES),
            },
            required_permission="user:write",
            reversible=True,
            compensating_tool="delete_user",
            compensation_parameters={"user_id": "output.user_id"},
            category=ToolCategory.WRITE,
        ),
        Tool(
            name="delete_user",
            handler=delete_user,
            parameter_schema={"user_id": ParameterSpec(type="string", required=True)},
            required_permission="user:delete",
            category=ToolCategory.DELETE,
        ),
        Tool(
            name="count_users",
            handler=count_users,
            description="Count users, optionally for one role.",
            parameter_schema={"role": ParameterSpec(type="string", allowed_values=ROLES)},
            required_permission="analytics:read",
            category=ToolCategory.READ,
        ),
    ]
