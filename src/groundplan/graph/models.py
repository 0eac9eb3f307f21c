"""
Resource graph data model.

A ResourceGraph is created for a single reconciliation run from a
desired-state document. Nodes are keyed by logical name; the dependency
relation is acyclic once the builder has validated it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterator

from groundplan.core.errors import CycleDetected
from groundplan.graph.values import AttributeValue, Reference, iter_references


class NodeStatus(StrEnum):
    """Lifecycle of a resource node during a run."""

    PLANNED = "planned"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    DESTROYED = "destroyed"


@dataclass
class ResourceNode:
    """A declared resource."""

    type: str
    name: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    depends_on: frozenset[str] = frozenset()
    status: NodeStatus = NodeStatus.PLANNED

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    def references(self) -> Iterator[Reference]:
        for value in self.attributes.values():
            yield from iter_references(value)


class ResourceGraph:
    """Mapping of logical name to ResourceNode with dependency queries."""

    def __init__(self, nodes: dict[str, ResourceNode] | None = None) -> None:
        self._nodes: dict[str, ResourceNode] = dict(nodes or {})

    def add(self, node: ResourceNode) -> None:
        self._nodes[node.name] = node

    def get(self, name: str) -> ResourceNode | None:
        return self._nodes.get(name)

    def __getitem__(self, name: str) -> ResourceNode:
        return self._nodes[name]

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def names(self) -> list[str]:
        return sorted(self._nodes)

    def dependencies(self, name: str) -> frozenset[str]:
        """Names of the nodes ``name`` depends on."""
        return self._nodes[name].depends_on

    def dependents(self, name: str) -> set[str]:
        """Names of the nodes that depend on ``name``."""
        return {node.name for node in self._nodes.values() if name in node.depends_on}

    def find_cycle(self) -> list[str] | None:
        """Return a cycle path such as ``[a, b, a]``, or None if acyclic."""
        white, grey, black = 0, 1, 2
        color = {name: white for name in self._nodes}

        for root in sorted(self._nodes):
            if color[root] != white:
                continue
            path: list[str] = [root]
            stack: list[Iterator[str]] = [iter(sorted(self._nodes[root].depends_on))]
            color[root] = grey
            while stack:
                advanced = False
                for dep in stack[-1]:
                    if dep not in color:
                        continue
                    if color[dep] == grey:
                        return path[path.index(dep) :] + [dep]
                    if color[dep] == white:
                        color[dep] = grey
                        path.append(dep)
                        stack.append(iter(sorted(self._nodes[dep].depends_on)))
                        advanced = True
                        break
                if not advanced:
                    color[path.pop()] = black
                    stack.pop()
        return None

    def topological_order(self) -> list[str]:
        """Names ordered so dependencies come before their dependents."""
        cycle = self.find_cycle()
        if cycle:
            raise CycleDetected(cycle)

        ordered: list[str] = []
        seen: set[str] = set()

        def visit(name: str) -> None:
            if name in seen:
                return
            seen.add(name)
            for dep in sorted(self._nodes[name].depends_on):
                if dep in self._nodes:
                    visit(dep)
            ordered.append(name)

        for name in sorted(self._nodes):
            visit(name)
        return ordered
