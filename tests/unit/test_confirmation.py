"""Tests for ConfirmationGate risk assessment."""

import pytest

from src.core.contracts.plan import RiskLevel
from src.core.contracts.tool import Tool, ToolCategory
from src.engine.confirmation import ConfirmationGate, is_destructive
from tests.factories.lms import make_plan, step


@pytest.fixture
def gate(registry) -> ConfirmationGate:
    return ConfirmationGate(registry)


def _noop(params, ctx):
    return None


class TestIsDestructive:
    def test_category_wins_over_name(self) -> None:
        assert is_destructive(Tool(name="tidy", handler=_noop, category=ToolCategory.DELETE))
        assert is_destructive(Tool(name="archive_all", handler=_noop, category=ToolCategory.BULK))
        assert not is_destructive(Tool(name="delete_draft", handler=_noop, category=ToolCategory.WRITE))

    def test_name_tokens_without_category(self) -> None:
        assert is_destructive(Tool(name="purge_inactive", handler=_noop))
        assert is_destructive(Tool(name="remove-user", handler=_noop))
        assert not is_destructive(Tool(name="deleted_report", handler=_noop))


class TestConfirmationGate:
    def test_low_risk_writes_pass(self, gate, validator, course_plan) -> None:
        assessment = gate.assess(validator.validate(course_plan))
        assert not assessment.requires_confirmation
        assert assessment.reasons == []

    def test_low_risk_single_write_step(self, gate, validator) -> None:
        plan = make_plan(step("s1", "send_notice", message="x"), risk_level="low")
        assert not gate.requires_confirmation(validator.validate(plan))

    def test_high_risk_plan(self, gate, validator) -> None:
        plan = make_plan(step("s1", "send_notice", message="x"), risk_level="high")
        assert gate.requires_confirmation(validator.validate(plan))

    def test_delete_step(self, gate, validator) -> None:
        plan = make_plan(step("s1", "delete_course", course_id="c1"))
        assessment = gate.assess(validator.validate(plan))
        assert assessment.requires_confirmation
        assert assessment.destructive_steps == ["s1"]
        assert assessment.risk_level == RiskLevel.HIGH

    def test_medium_risk_multi_step(self, gate, validator) -> None:
        single = make_plan(step("s1", "send_notice", message="x"), risk_level="medium")
        multi = make_plan(
            step("s1", "send_notice", message="x"),
            step("s2", "send_notice", message="y"),
            risk_level="medium",
        )
        assert not gate.requires_confirmation(validator.validate(single))
        assert gate.requires_confirmation(validator.validate(multi))

    def test_impact_summary(self, gate, validator) -> None:
        plan = make_plan(
            step("s1", "create_course", title="DB"),
            step("s2", "purge_inactive", ["s1"]),
        )
        summary = gate.impact_summary(validator.validate(plan))
        assert summary.step_count == 2
        assert summary.tools == ["create_course", "purge_inactive"]
        assert summary.destructive_steps == ["s2"]
        assert summary.required_permissions == ["course:write"]
