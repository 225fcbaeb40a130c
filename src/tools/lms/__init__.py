"""LMS domain tools backed by the admin Postgres schema (User, Course, Enrollment)."""
from __future__ import annotations

from src.core.contracts.tool import Tool
from src.tools.lms.courses import create_course_tools
from src.tools.lms.enrollments import create_enrollment_tools
from src.tools.lms.users import create_user_tools


def create_lms_tools(pg_url: str, key: str = "lms_db") -> list[Tool]:
    return [
        *create_course_tools(pg_url, key),
        *create_enrollment_tools(pg_url, key),
        *create_user_tools(pg_url, key),
    ]


__all__ = ["create_lms_tools", "create_course_tools", "create_enrollment_tools", "create_user_tools"]
