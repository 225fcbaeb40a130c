"""Decide whether a validated plan must wait for explicit human approval."""
from __future__ import annotations

import logging
import re

from pydantic import BaseModel, Field

from src.core.contracts.plan import RiskLevel, ValidatedPlan
from src.core.contracts.results import ImpactSummary
from src.core.contracts.tool import Tool, ToolCategory
from src.tools.registry import ToolRegistry

log = logging.getLogger("confirmation")

DESTRUCTIVE_CATEGORIES = frozenset({ToolCategory.DELETE, ToolCategory.BULK})
# only consulted when a tool declares no category
DESTRUCTIVE_NAME_TOKENS = frozenset({"delete", "remove", "purge", "drop", "bulk", "mass", "all"})


def is_destructive(tool: Tool) -> bool:
    if tool.category is not None:
        return tool.category in DESTRUCTIVE_CATEGORIES
    tokens = set(re.split(r"[^a-z0-9]+", tool.name.lower()))
    return bool(tokens & DESTRUCTIVE_NAME_TOKENS)


class RiskAssessment(BaseModel):
    requires_confirmation: bool
    risk_level: RiskLevel
    reasons: list[str] = Field(default_factory=list)
    destructive_steps: list[str] = Field(default_factory=list)


class ConfirmationGate:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def assess(self, validated: ValidatedPlan) -> RiskAssessment:
        plan = validated.plan
        reasons: list[str] = []
        if plan.risk_level == RiskLevel.HIGH:
            reasons.append("plan declared high risk")
        destructive = [
            s.id for s in plan.steps if is_destructive(self.registry.lookup(s.tool_name))
        ]
        if destructive:
            reasons.append("deletes or bulk-modifies data: " + ", ".join(destructive))
        if plan.risk_level == RiskLevel.MEDIUM and len(plan.steps) > 1:
            reasons.append(f"medium risk across {len(plan.steps)} steps")
        risk = RiskLevel.HIGH if destructive else plan.risk_level
        assessment = RiskAssessment(
            requires_confirmation=bool(reasons),
            risk_level=risk,
            reasons=reasons,
            destructive_steps=destructive,
        )
        if assessment.requires_confirmation:
            log.info("plan %s needs confirmation: %s", plan.id, "; ".join(reasons))
        return assessment

    def requires_confirmation(self, validated: ValidatedPlan) -> bool:
        return self.assess(validated).requires_confirmation

    def impact_summary(self, validated: ValidatedPlan, assessment: RiskAssessment | None = None) -> ImpactSummary:
        assessment = assessment or self.assess(validated)
        plan = validated.plan
        return ImpactSummary(
            risk_level=assessment.risk_level,
            step_count=len(plan.steps),
            tools=sorted({s.tool_name for s in plan.steps}),
            destructive_steps=assessment.destructive_steps,
            required_permissions=validated.required_permissions,
            reasons=assessment.reasons,
        )
