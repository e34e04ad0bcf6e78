"""Dependency bookkeeping for multi-step workflows.

Each proposed operation becomes a node; explicit ``depends_on`` ids become
``requires`` edges and parameter values that name an element created by an
earlier executed operation become ``references`` edges. The graph is a
general directed graph: edges that would close a cycle are refused rather
than assumed away. Ordering enforcement across passes is not done here.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Iterable, Optional

from gatekeeper.core.exceptions import DependencyCycleError, NotFoundError
from gatekeeper.core.models import (
    EXECUTED_STATES,
    ConfidenceEnvelope,
    DependencyEdge,
    DependencyNode,
    ProcessingStatus,
    RelationType,
)

logger = logging.getLogger("gatekeeper.workflow.coordinator")


class DependencyGraph:
    """Adjacency-map directed graph. Edge ``source -> target`` means source depends on target."""

    def __init__(self):
        self._nodes: dict[str, DependencyNode] = {}
        self._edges: list[DependencyEdge] = []
        self._adjacency: dict[str, set[str]] = {}

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def add_node(self, node_id: str, metadata: Optional[dict[str, Any]] = None) -> DependencyNode:
        node = self._nodes.get(node_id)
        if node is None:
            node = DependencyNode(node_id=node_id, metadata=dict(metadata or {}))
            self._nodes[node_id] = node
            self._adjacency[node_id] = set()
        elif metadata:
            node.metadata.update(metadata)
        return node

    def add_edge(
        self,
        source: str,
        target: str,
        relation: RelationType = RelationType.REQUIRES,
        strength: float = 1.0,
        notes: str = "",
    ) -> DependencyEdge:
        for node_id in (source, target):
            if node_id not in self._nodes:
                raise NotFoundError(f"Unknown node: {node_id}")
        if source == target or self.has_path(target, source):
            raise DependencyCycleError(source, target)

        edge = DependencyEdge(
            source=source, target=target, relation=relation, strength=strength, notes=notes,
        )
        self._edges.append(edge)
        self._adjacency[source].add(target)
        return edge

    def has_path(self, start: str, goal: str) -> bool:
        if start not in self._adjacency:
            return False
        seen = {start}
        frontier = deque([start])
        while frontier:
            current = frontier.popleft()
            if current == goal:
                return True
            for nxt in self._adjacency[current]:
                if nxt not in seen:
                    seen.add(nxt)
                    frontier.append(nxt)
        return False

    def dependencies_of(self, node_id: str) -> list[str]:
        return sorted(self._adjacency.get(node_id, ()))

    def topological_order(self) -> list[str]:
        """Dependencies before dependents; ties keep insertion order."""
        remaining = {n: len(self._adjacency[n]) for n in self._nodes}
        dependents: dict[str, list[str]] = {n: [] for n in self._nodes}
        for edge in self._edges:
            dependents[edge.target].append(edge.source)

        ready = deque(n for n in self._nodes if remaining[n] == 0)
        order: list[str] = []
        while ready:
            node_id = ready.popleft()
            order.append(node_id)
            for dependent in dependents[node_id]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        return order

    @property
    def nodes(self) -> list[DependencyNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._edges)


class PassCoordinator:
    """Tracks operations and their dependencies as they are proposed."""

    def __init__(self):
        self.graph = DependencyGraph()
        self._lock = threading.Lock()
        self._element_owner: dict[str, str] = {}

    def register(
        self, envelope: ConfidenceEnvelope, depends_on: Iterable[str] = (),
    ) -> list[str]:
        """Add the envelope as a node with its edges. Returns warnings for skipped edges."""
        warnings: list[str] = []
        with self._lock:
            self.graph.add_node(envelope.operation_id, {
                "method": envelope.method_name,
                "status": envelope.status.value,
                "confidence": envelope.overall_confidence,
            })

            for dependency in depends_on:
                self._try_edge(
                    envelope.operation_id, dependency, RelationType.REQUIRES, 1.0,
                    "declared dependency", warnings,
                )

            for key, value in envelope.parameters.items():
                owner = self._element_owner.get(str(value)) if isinstance(value, (str, int)) else None
                if owner is not None and owner != envelope.operation_id:
                    self._try_edge(
                        envelope.operation_id, owner, RelationType.REFERENCES, 0.8,
                        f"parameter '{key}' references element {value}", warnings,
                    )

        for warning in warnings:
            logger.warning(warning)
        return warnings

    def _try_edge(
        self,
        source: str,
        target: str,
        relation: RelationType,
        strength: float,
        notes: str,
        warnings: list[str],
    ) -> None:
        if target not in self.graph:
            warnings.append(f"Unknown dependency {target} for operation {source}; edge skipped")
            return
        try:
            self.graph.add_edge(source, target, relation, strength, notes)
        except DependencyCycleError as e:
            warnings.append(f"{e}; edge skipped")

    def update_status(
        self,
        operation_id: str,
        status: ProcessingStatus,
        element_id: Optional[str] = None,
    ) -> None:
        """Refresh node status; executed operations register the element they created."""
        with self._lock:
            if operation_id not in self.graph:
                return
            self.graph.add_node(operation_id, {"status": status.value})
            if element_id is not None and status in EXECUTED_STATES:
                self._element_owner.setdefault(element_id, operation_id)

    def get_dependency_graph(self) -> dict[str, list]:
        with self._lock:
            return {
                "nodes": [n.model_copy(deep=True) for n in self.graph.nodes],
                "edges": [e.model_copy() for e in self.graph.edges],
            }
