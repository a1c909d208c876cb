"""Arena-indexed relationship graph between candidate topics."""

from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum

from ..errors import TopicCycleError


class RelationshipType(str, Enum):
    PREREQUISITE = "prerequisite"
    COMPONENT = "component"
    RELATED = "related"
    APPLICATION = "application"


# Edge types that define the subtopic hierarchy
HIERARCHY_TYPES = frozenset({RelationshipType.PREREQUISITE, RelationshipType.COMPONENT})


@dataclass(frozen=True)
class TopicEdge:
    """Directed edge ``parent -> child`` between node indices."""

    parent: int
    child: int
    kind: RelationshipType
    strength: float


class TopicGraph:
    """Nodes are indices into ``labels``; edges are index pairs."""

    def __init__(self, labels: list[str]):
        self.labels = list(labels)
        self.edges: list[TopicEdge] = []

    def __len__(self) -> int:
        return len(self.labels)

    def add_edge(
        self, parent: int, child: int, kind: RelationshipType, strength: float
    ) -> None:
        if parent == child:
            raise ValueError(f"Self edge on node {parent}")
        self.edges.append(TopicEdge(parent, child, kind, strength))

    def hierarchy_edges(self) -> list[TopicEdge]:
        return [e for e in self.edges if e.kind in HIERARCHY_TYPES]

    def neighbors(self, node: int, kinds: frozenset[RelationshipType]) -> list[tuple[int, float]]:
        """Nodes linked to ``node`` by the given edge kinds, strongest first."""
        linked = [
            (e.child if e.parent == node else e.parent, e.strength)
            for e in self.edges
            if e.kind in kinds and node in (e.parent, e.child)
        ]
        return sorted(linked, key=lambda item: (-item[1], item[0]))

    def topological_order(self, edges: list[TopicEdge] | None = None) -> list[int]:
        """
        Kahn's algorithm over ``edges`` (default: hierarchy edges).

        Raises:
            TopicCycleError: If the edges contain a cycle
        """
        edges = self.hierarchy_edges() if edges is None else edges
        indegree = [0] * len(self.labels)
        outgoing: dict[int, list[int]] = defaultdict(list)
        for edge in edges:
            outgoing[edge.parent].append(edge.child)
            indegree[edge.child] += 1

        ready = deque(i for i, d in enumerate(indegree) if d == 0)
        order: list[int] = []
        while ready:
            node = ready.popleft()
            order.append(node)
            for child in outgoing[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)

        if len(order) < len(self.labels):
            raise TopicCycleError(
                [[self.labels[i] for i in cycle] for cycle in self.find_cycles(edges)]
            )
        return order

    def find_cycles(self, edges: list[TopicEdge] | None = None) -> list[list[int]]:
        """Strongly connected components with more than one node (Kosaraju)."""
        edges = self.hierarchy_edges() if edges is None else edges
        forward: dict[int, list[int]] = defaultdict(list)
        backward: dict[int, list[int]] = defaultdict(list)
        for edge in edges:
            forward[edge.parent].append(edge.child)
            backward[edge.child].append(edge.parent)

        visited: set[int] = set()
        finish_order: list[int] = []
        for start in range(len(self.labels)):
            if start in visited:
                continue
            visited.add(start)
            stack = [(start, iter(forward[start]))]
            while stack:
                node, children = stack[-1]
                advanced = False
                for child in children:
                    if child not in visited:
                        visited.add(child)
                        stack.append((child, iter(forward[child])))
                        advanced = True
                        break
                if not advanced:
                    finish_order.append(node)
                    stack.pop()

        assigned: set[int] = set()
        components: list[list[int]] = []
        for start in reversed(finish_order):
            if start in assigned:
                continue
            component = []
            pending = [start]
            assigned.add(start)
            while pending:
                node = pending.pop()
                component.append(node)
                for parent in backward[node]:
                    if parent not in assigned:
                        assigned.add(parent)
                        pending.append(parent)
            if len(component) > 1:
                components.append(sorted(component))

        return sorted(components)

    def acyclic_hierarchy_edges(self) -> tuple[list[TopicEdge], list[list[int]]]:
        """Hierarchy edges with those inside a cycle removed, plus the cycles."""
        edges = self.hierarchy_edges()
        cycles = self.find_cycles(edges)
        component_of = {node: i for i, cycle in enumerate(cycles) for node in cycle}
        usable = [
            e for e in edges
            if not (
                e.parent in component_of
                and component_of.get(e.parent) == component_of.get(e.child)
            )
        ]
        return usable, cycles
