"""Evaluation order for node constraints.

Two relations are overlaid on the node index space: hierarchy edges
(parent -> child, a child's world transform needs its parent's) and
constraint edges (source -> target). A node may only be evaluated once every
node it depends on through either relation has been.
"""
import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set

from vrm_errors import ConstraintCycleDetected, InvalidConstraintReference
from vrm_scene import SceneGraph

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """Adjacency lists keyed by node index."""

    node_count: int
    tree_edges: Dict[int, List[int]] = field(default_factory=dict)
    constraint_edges: Dict[int, List[int]] = field(default_factory=dict)

    def successors(self, index: int) -> List[int]:
        return self.tree_edges.get(index, []) + self.constraint_edges.get(index, [])

    def in_degrees(self) -> List[int]:
        degrees = [0] * self.node_count
        for edges in (self.tree_edges, self.constraint_edges):
            for targets in edges.values():
                for target in targets:
                    degrees[target] += 1
        return degrees


class ConstraintResolver:
    """Orders nodes so constraint sources are evaluated before their targets."""

    def __init__(self, scene: SceneGraph):
        self.scene = scene

    def build_graph(self) -> DependencyGraph:
        """Collect hierarchy and constraint edges.

        Raises:
            InvalidConstraintReference: If a constraint names a missing node or
                its own target as source
        """
        node_count = len(self.scene.nodes)
        graph = DependencyGraph(node_count=node_count)

        for node in self.scene.nodes:
            if node.children:
                graph.tree_edges[node.index] = list(node.children)

        for constraint in self.scene.constraints:
            target, source = constraint.target, constraint.source
            if not 0 <= target < node_count:
                raise InvalidConstraintReference(
                    f"Constraint target {target} is not a node", node_id=target, source=source
                )
            if not 0 <= source < node_count:
                raise InvalidConstraintReference(
                    f"Constraint on node {target} refers to missing source {source}",
                    node_id=target,
                    source=source,
                )
            if source == target:
                raise InvalidConstraintReference(
                    f"Constraint on node {target} uses itself as source", node_id=target, source=source
                )
            graph.constraint_edges.setdefault(source, []).append(target)

        return graph

    def resolve(self) -> List[int]:
        """Topologically sort all nodes.

        Among nodes that are ready at the same time the lowest index goes
        first, so the order is reproducible.

        Returns:
            Every node index exactly once

        Raises:
            ConstraintCycleDetected: If the edges cannot be ordered
        """
        graph = self.build_graph()
        degrees = graph.in_degrees()
        ready = [i for i, d in enumerate(degrees) if d == 0]
        heapq.heapify(ready)

        order = []
        while ready:
            index = heapq.heappop(ready)
            order.append(index)
            for successor in graph.successors(index):
                degrees[successor] -= 1
                if degrees[successor] == 0:
                    heapq.heappush(ready, successor)

        if len(order) < graph.node_count:
            cycle = self._cycle_nodes(graph, set(range(graph.node_count)) - set(order))
            raise ConstraintCycleDetected(cycle)

        logger.debug("Constraint evaluation order: %s", order)
        return order

    def _cycle_nodes(self, graph: DependencyGraph, remaining: Set[int]) -> Set[int]:
        """Reduce the unordered nodes to the ones that sit on a cycle.

        Nodes left over after sorting are on a cycle, downstream of one, or
        between two cycles. Only strongly connected components with more than
        one node are cycles (self references are rejected earlier).
        """
        cycle: Set[int] = set()
        for component in strongly_connected(graph, remaining):
            if len(component) > 1:
                cycle.update(component)
        return cycle


def strongly_connected(graph: DependencyGraph, nodes: Set[int]) -> List[Set[int]]:
    """Tarjan's algorithm restricted to ``nodes``, without recursion."""
    index_of: Dict[int, int] = {}
    lowlink: Dict[int, int] = {}
    stack: List[int] = []
    on_stack: Set[int] = set()
    components: List[Set[int]] = []
    counter = 0

    for start in sorted(nodes):
        if start in index_of:
            continue
        work = [(start, iter(graph.successors(start)))]
        index_of[start] = lowlink[start] = counter
        counter += 1
        stack.append(start)
        on_stack.add(start)

        while work:
            node, successors = work[-1]
            advanced = False
            for successor in successors:
                if successor not in nodes:
                    continue
                if successor not in index_of:
                    index_of[successor] = lowlink[successor] = counter
                    counter += 1
                    stack.append(successor)
                    on_stack.add(successor)
                    work.append((successor, iter(graph.successors(successor))))
                    advanced = True
                    break
                if successor in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[successor])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                component = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == node:
                        break
                components.append(component)

    return components
