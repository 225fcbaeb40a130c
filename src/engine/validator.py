"""Structural checks a plan must pass before anything is executed."""
from __future__ import annotations

import logging
from typing import Any

from src.core.contracts.plan import TaskPlan, ValidatedPlan
from src.core.contracts.tool import ParameterSpec
from src.core.exceptions import (
    CyclicDependencyError,
    DanglingDependencyError,
    InvalidParameterError,
    MissingParameterError,
    UnknownToolError,
)
from src.engine.graph import ancestors, dependency_graph, find_cycle, topological_order
from src.engine.references import is_reference, iter_references
from src.tools.registry import ToolRegistry

log = logging.getLogger("validator")


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "any":
        return True
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "array":
        return isinstance(value, (list, tuple))
    if expected == "object":
        return isinstance(value, dict)
    return True


class PlanValidator:
    """Fail-fast validation, in order: tools, dependencies, cycles, required
    parameters, parameter values. The first violation is raised."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def validate(self, plan: TaskPlan | ValidatedPlan) -> ValidatedPlan:
        if isinstance(plan, ValidatedPlan):
            plan = plan.plan
        self._check_tools(plan)
        self._check_dependencies(plan)
        graph = dependency_graph(plan)
        cycle = find_cycle(graph)
        if cycle:
            raise CyclicDependencyError(cycle)
        self._check_required_parameters(plan, graph)
        self._check_parameter_values(plan)
        permissions = {
            self.registry.lookup(s.tool_name).required_permission for s in plan.steps
        }
        validated = ValidatedPlan(
            plan=plan,
            topological_order=topological_order(graph),
            required_permissions=sorted(p for p in permissions if p),
        )
        log.info("plan %s valid: %d steps", plan.id, len(plan.steps))
        return validated

    def _check_tools(self, plan: TaskPlan) -> None:
        for step in plan.steps:
            if step.tool_name not in self.registry:
                raise UnknownToolError(step.tool_name, step_id=step.id)

    def _check_dependencies(self, plan: TaskPlan) -> None:
        ids = set(plan.step_ids)
        for step in plan.steps:
            for dep in step.depends_on:
                if dep not in ids:
                    raise DanglingDependencyError(step.id, dep)

    def _check_required_parameters(self, plan: TaskPlan, graph: dict[str, list[str]]) -> None:
        for step in plan.steps:
            tool = self.registry.lookup(step.tool_name)
            prior = ancestors(graph, step.id)
            for name in tool.required_parameters:
                if name not in step.parameters:
                    raise MissingParameterError(step.id, name)
            for name, value in step.parameters.items():
                for ref_step, _ in iter_references(value):
                    if ref_step in prior:
                        continue
                    reason = f"references step {ref_step}, which is not a dependency"
                    spec = tool.parameter_schema.get(name)
                    if spec is not None and spec.required:
                        raise MissingParameterError(step.id, name, reason)
                    raise InvalidParameterError(step.id, name, reason)

    def _check_parameter_values(self, plan: TaskPlan) -> None:
        for step in plan.steps:
            tool = self.registry.lookup(step.tool_name)
            for name, value in step.parameters.items():
                spec = tool.parameter_schema.get(name)
                if spec is None or is_reference(value):
                    continue
                self._check_value(step.id, name, value, spec)

    @staticmethod
    def _check_value(step_id: str, name: str, value: Any, spec: ParameterSpec) -> None:
        if value is None:
            if spec.required:
                raise MissingParameterError(step_id, name, "value is null")
            return
        if not _matches_type(value, spec.type):
            raise InvalidParameterError(step_id, name, f"expected {spec.type}, got {type(value).__name__}")
        if spec.allowed_values is not None and value not in spec.allowed_values:
            raise InvalidParameterError(step_id, name, f"{value!r} not in {spec.allowed_values}")
