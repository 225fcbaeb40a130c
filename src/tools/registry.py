from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from src.core.contracts.tool import Tool
from src.core.exceptions import DuplicateToolError, InvalidToolError, UnknownToolError

log = logging.getLogger("registry")


class ToolRegistry:
    """Name -> Tool map shared by every agent in the process.

    Registration happens before execution starts and is not guarded; after that
    the registry is only read, so concurrent lookups need no locking.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, tool: Tool) -> Tool:
        """Add a tool. A reversible tool must name a compensator other than itself.

        The compensator may be registered later, so its existence is checked at
        rollback time. A non-reversible tool may still name one; rollback ignores it.
        """
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        if tool.reversible and not tool.compensating_tool:
            raise InvalidToolError(tool.name, "reversible tools must declare a compensating_tool")
        if tool.compensating_tool == tool.name:
            raise InvalidToolError(tool.name, "a tool cannot compensate itself")
        self._tools[tool.name] = tool
        log.debug("registered tool %s", tool.name)
        return tool

    def lookup(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def tools(self) -> Iterable[Tool]:
        # dict view: lazy and can be iterated again
        return self._tools.values()

    def names(self) -> list[str]:
        return sorted(self._tools)

    def scoped(self, tool_names: Iterable[str]) -> list[Tool]:
        """Tools of one agent's domain, in the order given; unknown names raise."""
        return [self.lookup(n) for n in tool_names]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def build_registry(clients: dict[str, Any]) -> ToolRegistry:
    """Build the process-wide registry, injecting data clients into domain tools."""
    from src.tools.lms import create_lms_tools

    registry = ToolRegistry()
    pg_url = clients.get("lms_db")
    if not pg_url:
        log.warning("No lms_db client configured; LMS tools not registered")
        return registry
    for tool in create_lms_tools(pg_url, key="lms_db"):
        registry.register(tool)
    return registry
