"""Dependency Scheduler

Kahn-style ready queue over a parsed Graph. A node becomes ready once every
edge targeting it originates from a Complete node; nodes are handed out in
the order they became ready (FIFO). Errored nodes never release their
dependents, which stay Pending and are reported as unexecuted.

Structural cycles are rejected up front, before any node is handed out.
A dequeue safety bound of ``max(floor, node_count ** 2)`` guards against
stalls that slip past that check.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from .. import settings
from .errors import GraphCycleError
from .graph import Graph

logger = logging.getLogger(__name__)


def find_cycle(graph: Graph) -> Optional[List[str]]:
    """Return the first cycle found by DFS as a node path (last == first).

    Iterative, so long chains do not hit the interpreter's recursion limit.
    """
    visited: Set[str] = set()
    path: List[str] = []
    on_path: Set[str] = set()

    for root in graph.node_ids:
        if root in visited:
            continue
        visited.add(root)
        path.append(root)
        on_path.add(root)
        stack = [(root, iter(graph.outgoing_edges(root)))]

        while stack:
            node_id, edges = stack[-1]
            for edge in edges:
                if edge.target in on_path:
                    start = path.index(edge.target)
                    return path[start:] + [edge.target]
                if edge.target not in visited:
                    visited.add(edge.target)
                    path.append(edge.target)
                    on_path.add(edge.target)
                    stack.append((edge.target, iter(graph.outgoing_edges(edge.target))))
                    break
            else:
                stack.pop()
                path.pop()
                on_path.remove(node_id)
    return None


class DependencyScheduler:
    """Hands out node ids in dependency order.

    Usage:
        scheduler = DependencyScheduler(graph)
        while (node_id := scheduler.next_ready()) is not None:
            ...execute...
            scheduler.mark_complete(node_id)  # or mark_error(node_id)

    Raises:
        GraphCycleError: On construction if the graph contains a cycle
    """

    def __init__(self, graph: Graph, min_safety_bound: Optional[int] = None):
        cycle = find_cycle(graph)
        if cycle:
            raise GraphCycleError(
                f"Graph contains a cycle: {' -> '.join(cycle)}",
                cycle_path=cycle,
            )

        self._graph = graph
        floor = settings.SCHEDULER_MIN_SAFETY_BOUND if min_safety_bound is None else min_safety_bound
        self.safety_bound = max(floor, len(graph.nodes) ** 2)
        self.attempts = 0

        # Unsatisfied incoming edges per node
        self._waiting_on: Dict[str, int] = {
            node.id: len(graph.incoming_edges(node.id)) for node in graph.nodes
        }
        self._ready: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._complete: Set[str] = set()
        self._errored: Set[str] = set()

        for node in graph.nodes:
            if self._waiting_on[node.id] == 0:
                self._enqueue(node.id)

    def is_done(self, node_id: str) -> bool:
        return node_id in self._complete or node_id in self._errored

    def _enqueue(self, node_id: str) -> None:
        if node_id in self._queued or self.is_done(node_id):
            return
        self._queued.add(node_id)
        self._ready.append(node_id)

    def next_ready(self) -> Optional[str]:
        """Pop the next ready node, or None when nothing is ready.

        Raises:
            GraphCycleError: If the safety bound is exceeded
        """
        while self._ready:
            self.attempts += 1
            if self.attempts > self.safety_bound:
                raise GraphCycleError(
                    f"Scheduler exceeded safety bound of {self.safety_bound} "
                    f"dequeue attempts; pending nodes: {self.pending()}"
                )
            node_id = self._ready.popleft()
            if self.is_done(node_id):
                continue
            return node_id
        return None

    def mark_complete(self, node_id: str) -> List[str]:
        """Record a node as Complete and return dependents that became ready."""
        if self.is_done(node_id):
            return []
        self._complete.add(node_id)
        self._ready_discard(node_id)

        released = []
        for edge in self._graph.outgoing_edges(node_id):
            self._waiting_on[edge.target] -= 1
            if self._waiting_on[edge.target] == 0 and not self.is_done(edge.target):
                self._enqueue(edge.target)
                released.append(edge.target)
        if released:
            logger.debug(f"Node '{node_id}' released: {released}")
        return released

    def mark_error(self, node_id: str) -> None:
        """Record a node as failed; its dependents are never released."""
        if self.is_done(node_id):
            return
        self._errored.add(node_id)
        self._ready_discard(node_id)

    def _ready_discard(self, node_id: str) -> None:
        if node_id in self._queued:
            self._queued.discard(node_id)
            try:
                self._ready.remove(node_id)
            except ValueError:
                pass

    def pending(self) -> List[str]:
        """Nodes never completed or errored, in discovery order."""
        return [nid for nid in self._graph.node_ids if not self.is_done(nid)]
