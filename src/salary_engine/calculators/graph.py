"""Component dependency graph and evaluation ordering."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from salary_engine.calculators.errors import (
    CyclicDependencyError,
    InvalidReferenceError,
    StructureDefinitionError,
)
from salary_engine.calculators.types import ComponentSpec, PercentageRule


class _Color(Enum):
    WHITE = 0  # Not visited
    GREY = 1  # On the current DFS path
    BLACK = 2  # Finished


@dataclass(frozen=True)
class ComponentGraph:
    """Percentage-base dependency graph over a structure's components.

    Nodes are stored in a flat list in mapping order; edges are index-based.
    An edge A -> B means A's percentage base is B, so B must be evaluated
    before A.
    """

    nodes: tuple[ComponentSpec, ...]
    index: dict[str, int]  # component_id -> position in nodes
    edges: tuple[tuple[int, ...], ...]  # adjacency list, parallel to nodes

    @classmethod
    def build(cls, components: Sequence[ComponentSpec]) -> ComponentGraph:
        """Build the graph from a structure's components.

        Raises:
            StructureDefinitionError: If the structure is empty or maps a
                component twice
            InvalidReferenceError: If a percentage base is not in the structure
        """
        if not components:
            raise StructureDefinitionError("Salary structure has no components")

        index: dict[str, int] = {}
        for i, spec in enumerate(components):
            if spec.component_id in index:
                raise StructureDefinitionError(
                    f"Component {spec.component_id} is mapped more than once"
                )
            index[spec.component_id] = i

        edges: list[tuple[int, ...]] = []
        for spec in components:
            rule = spec.rule
            if isinstance(rule, PercentageRule) and rule.base_component_id is not None:
                target = index.get(rule.base_component_id)
                if target is None:
                    raise InvalidReferenceError(spec.component_id, rule.base_component_id)
                edges.append((target,))
            else:
                edges.append(())

        return cls(nodes=tuple(components), index=index, edges=tuple(edges))

    @property
    def roots(self) -> list[ComponentSpec]:
        """Components with no percentage base."""
        return [node for node, out in zip(self.nodes, self.edges) if not out]

    def dependencies_of(self, component_id: str) -> list[str]:
        """Direct percentage bases of a component."""
        return [self.nodes[j].component_id for j in self.edges[self.index[component_id]]]

    def evaluation_order(self) -> list[ComponentSpec]:
        """Return components ordered so each follows its percentage base.

        Iterative depth-first search with three-colour marking. Nodes are
        visited in mapping order, so independent components keep their
        relative order and the result is deterministic.

        Raises:
            CyclicDependencyError: On the first back-edge found
        """
        color = [_Color.WHITE] * len(self.nodes)
        order: list[ComponentSpec] = []

        for start in range(len(self.nodes)):
            if color[start] is not _Color.WHITE:
                continue

            # Stack of (node, next edge position); path mirrors GREY nodes
            stack: list[tuple[int, int]] = [(start, 0)]
            path: list[int] = [start]
            color[start] = _Color.GREY

            while stack:
                node, pos = stack[-1]
                out = self.edges[node]

                if pos < len(out):
                    stack[-1] = (node, pos + 1)
                    nxt = out[pos]
                    if color[nxt] is _Color.GREY:
                        cycle_start = path.index(nxt)
                        cycle = [self.nodes[i].component_id for i in path[cycle_start:]]
                        cycle.append(self.nodes[nxt].component_id)
                        raise CyclicDependencyError(cycle)
                    if color[nxt] is _Color.WHITE:
                        color[nxt] = _Color.GREY
                        stack.append((nxt, 0))
                        path.append(nxt)
                    continue

                stack.pop()
                path.pop()
                color[node] = _Color.BLACK
                order.append(self.nodes[node])

        return order


def evaluation_order(components: Sequence[ComponentSpec]) -> list[ComponentSpec]:
    """Build the graph and sort it in one step."""
    return ComponentGraph.build(components).evaluation_order()
