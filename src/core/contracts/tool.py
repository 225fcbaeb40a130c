"""Tool contract: the generic invocation interface every domain capability conforms to."""
from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field


class ToolCategory(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    BULK = "bulk"


class ParameterSpec(BaseModel):
    type: str = "any"  # "string" | "integer" | "number" | "boolean" | "array" | "object" | "any"
    required: bool = False
    allowed_values: list[Any] | None = None
    description: str = ""


class ToolContext(BaseModel):
    """Who is acting and what they may do. Passed to every tool call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    actor_id: str
    granted_permissions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    # set by the engine when the execution is cancelled; tools may poll it
    cancel_event: asyncio.Event | None = Field(default=None, exclude=True)

    def has_permission(self, permission: str | None) -> bool:
        if not permission:
            return True
        granted = set(self.granted_permissions)
        return "*" in granted or permission in granted

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class ToolOutcome(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolOutcome":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolOutcome":
        return cls(success=False, error=error)


# handler(parameters, context) -> ToolOutcome | data, sync or async
ToolHandler = Callable[[dict[str, Any], ToolContext], Any]


class Tool(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    handler: ToolHandler = Field(exclude=True, repr=False)
    description: str = ""
    parameter_schema: dict[str, ParameterSpec] = Field(default_factory=dict)
    required_permission: str | None = None
    reversible: bool = False
    compensating_tool: str | None = None
    # compensator param name -> "output.<path>" | "parameters.<path>"
    compensation_parameters: dict[str, str] = Field(default_factory=dict)
    category: ToolCategory | None = None
    timeout_seconds: float | None = None

    @property
    def required_parameters(self) -> list[str]:
        return [name for name, spec in self.parameter_schema.items() if spec.required]

    async def apply(self, parameters: dict[str, Any], context: ToolContext) -> ToolOutcome:
        result = self.handler(parameters, context)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ToolOutcome):
            return result
        return ToolOutcome.ok(result)

    def describe(self) -> dict[str, Any]:
        """JSON-safe description for planners and the /tools endpoint."""
        return self.model_dump(mode="json")
