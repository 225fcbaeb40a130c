"""Shared fixtures for unit and integration tests."""
from __future__ import annotations

import pytest

from src.core.config.models import EngineConfig
from src.core.contracts.plan import TaskPlan
from src.core.contracts.tool import ToolContext
from src.engine.audit import InMemoryAuditSink
from src.engine.engine import ExecutionEngine
from src.engine.validator import PlanValidator
from src.tools.registry import ToolRegistry
from tests.factories.lms import FakeClock, FakeLms, make_plan, step


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def lms() -> FakeLms:
    return FakeLms()


@pytest.fixture
def registry(lms: FakeLms) -> ToolRegistry:
    return ToolRegistry(lms.tools())


@pytest.fixture
def validator(registry: ToolRegistry) -> PlanValidator:
    return PlanValidator(registry)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the executor's injected sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(backoff_base_seconds=0.5, step_timeout_seconds=5)


@pytest.fixture
def engine(registry, engine_config, audit_sink, fake_sleep, clock) -> ExecutionEngine:
    return ExecutionEngine(
        registry,
        config=engine_config,
        audit_sink=audit_sink,
        clock=clock,
        sleep=fake_sleep,
    )


@pytest.fixture
def admin() -> ToolContext:
    return ToolContext(actor_id="admin-1", granted_permissions=["*"])


@pytest.fixture
def course_plan() -> TaskPlan:
    """create_course -> enroll_students, the enrollment fed by the new course id."""
    return make_plan(
        step("s1", "create_course", title="Databases"),
        step("s2", "enroll_students", ["s1"], course_id={"$ref": "s1.course_id"}, user_ids=["u1", "u2"]),
        plan_id="plan-course",
    )
