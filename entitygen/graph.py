"""Dependency graph and deterministic topological ordering."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)


class SchemaGenerationError(Exception):
    """Raised when the registered entities cannot be turned into a schema."""


class CircularDependencyError(SchemaGenerationError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Circular dependency detected: " + " -> ".join(cycle))


class DependencyGraph:
    """Directed graph where an edge A -> B means A must come after B."""

    def __init__(self, nodes: Iterable[str] = ()):
        self.edges: dict[str, set[str]] = {}
        for node in nodes:
            self.add_node(node)

    def add_node(self, node: str) -> None:
        self.edges.setdefault(node, set())

    def add_edge(self, source: str, target: str) -> None:
        self.add_node(source)
        self.add_node(target)
        self.edges[source].add(target)

    @property
    def nodes(self) -> list[str]:
        return sorted(self.edges)

    def dependencies(self, node: str) -> list[str]:
        return sorted(self.edges.get(node, ()))

    @classmethod
    def from_mapping(cls, deps: Mapping[str, Iterable[str]]) -> "DependencyGraph":
        graph = cls(deps)
        for source, targets in deps.items():
            for target in targets:
                graph.add_edge(source, target)
        return graph

    def topological_order(self) -> list[str]:
        """Dependencies first; nodes and their dependencies are visited in name order."""
        visited: set[str] = set()
        visiting: list[str] = []
        order: list[str] = []

        def visit(node: str) -> None:
            if node in visited:
                return
            if node in visiting:
                cycle = visiting[visiting.index(node):] + [node]
                raise CircularDependencyError(cycle)
            visiting.append(node)
            for dep in self.dependencies(node):
                visit(dep)
            visiting.pop()
            visited.add(node)
            order.append(node)

        for node in self.nodes:
            visit(node)
        logger.debug("Topological order: %s", order)
        return order


def topological_order(deps: Mapping[str, Iterable[str]]) -> list[str]:
    return DependencyGraph.from_mapping(deps).topological_order()
