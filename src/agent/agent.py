"""Domain agents composed over the shared engine and registry."""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable

from src.core.config.models import DomainConfig
from src.core.contracts.plan import Intent, TaskPlan
from src.core.contracts.results import ApprovalToken, ExecutionResult, PendingConfirmation
from src.core.contracts.tool import Tool, ToolContext
from src.engine.engine import ExecutionEngine
from src.tools.registry import ToolRegistry

log = logging.getLogger("agent")

# External planner (LLM-backed or rule-based): intent + available tools -> plan
Planner = Callable[[Intent, list[Tool]], TaskPlan | Awaitable[TaskPlan]]


class Agent:
    """An agent owns a slice of the registry and submits plans to the shared engine.

    Plans may still reference tools of other domains; they are resolved through
    the one shared registry so ordering and rollback stay uniform.
    """

    def __init__(
        self,
        name: str,
        engine: ExecutionEngine,
        registry: ToolRegistry,
        tool_names: list[str] | None = None,
        description: str = "",
    ):
        self.name = name
        self.engine = engine
        self.registry = registry
        self.tool_names = list(tool_names or [])
        self.description = description

    def tools(self) -> list[Tool]:
        return [self.registry.lookup(n) for n in self.tool_names if n in self.registry]

    def owns(self, tool_name: str) -> bool:
        return tool_name in self.tool_names

    async def run(
        self,
        plan: TaskPlan,
        context: ToolContext,
        approval: ApprovalToken | None = None,
    ) -> ExecutionResult | PendingConfirmation:
        foreign = sorted({s.tool_name for s in plan.steps if not self.owns(s.tool_name)})
        if foreign:
            log.info("agent %s: plan %s also uses %s", self.name, plan.id, ", ".join(foreign))
        return await self.engine.execute(plan, context, approval=approval)

    async def handle(self, intent: Intent, planner: Planner, context: ToolContext) -> ExecutionResult | PendingConfirmation:
        plan = planner(intent, self.tools())
        if inspect.isawaitable(plan):
            plan = await plan
        log.info("agent %s: intent %s -> plan %s (%d steps)", self.name, intent.action, plan.id, len(plan.steps))
        return await self.run(plan, context)

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "tools": [t.name for t in self.tools()]}


def build_agents(domain_config: DomainConfig, engine: ExecutionEngine, registry: ToolRegistry) -> dict[str, Agent]:
    agents: dict[str, Agent] = {}
    for cfg in domain_config.agents:
        missing = [n for n in cfg.tool_names if n not in registry]
        if missing:
            log.warning("agent %s: tools not registered: %s", cfg.name, ", ".join(missing))
        agents[cfg.name] = Agent(cfg.name, engine, registry, cfg.tool_names, cfg.description)
    return agents
