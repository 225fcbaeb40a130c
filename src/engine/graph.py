"""Dependency graph helpers. Edges point from a step to its prerequisites."""
from __future__ import annotations

import heapq
from collections.abc import Mapping, Sequence

from src.core.contracts.plan import TaskPlan


def dependency_graph(plan: TaskPlan) -> dict[str, list[str]]:
    return {s.id: list(s.depends_on) for s in plan.steps}


def find_cycle(graph: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Depth-first search tracking the nodes currently being visited.

    Returns the cycle as a closed path (first node repeated at the end), or
    None when the graph is acyclic. Nodes are explored in ascending id order so
    the reported cycle is deterministic.
    """
    path: list[str] = []
    on_path: set[str] = set()
    done: set[str] = set()

    def visit(node: str) -> list[str] | None:
        path.append(node)
        on_path.add(node)
        for dep in sorted(graph.get(node, ())):
            if dep in on_path:
                return path[path.index(dep):] + [dep]
            if dep not in done:
                cycle = visit(dep)
                if cycle:
                    return cycle
        path.pop()
        on_path.discard(node)
        done.add(node)
        return None

    for node in sorted(graph):
        if node not in done:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def _dependents(graph: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    dependents: dict[str, list[str]] = {n: [] for n in graph}
    for node, deps in graph.items():
        for dep in deps:
            dependents[dep].append(node)
    return dependents


def topological_order(graph: Mapping[str, Sequence[str]]) -> list[str]:
    """Kahn's algorithm, ascending id among ready nodes. Graph must be acyclic."""
    remaining = {n: len(set(deps)) for n, deps in graph.items()}
    dependents = _dependents(graph)
    ready = [n for n, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for child in dependents[node]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, child)
    if len(order) != len(graph):
        raise ValueError("graph has a cycle")
    return order


def layers(graph: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Group nodes so that every node sits one layer after its deepest prerequisite."""
    depth: dict[str, int] = {}
    for node in topological_order(graph):
        deps = graph[node]
        depth[node] = 1 + max((depth[d] for d in deps), default=-1)
    grouped: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for node, level in depth.items():
        grouped[level].append(node)
    return [sorted(group) for group in grouped]


def ancestors(graph: Mapping[str, Sequence[str]], node: str) -> set[str]:
    """All transitive prerequisites of node."""
    seen: set[str] = set()
    stack = list(graph.get(node, ()))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(graph.get(current, ()))
    return seen
