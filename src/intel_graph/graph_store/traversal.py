"""
Breadth-first traversal and shortest path search.

Both searches only walk active edges between active nodes. Depth and
visited-node limits are hard caps; a wall-clock budget and an optional
cancel token bound the work further on large graphs.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.config import Settings
from intel_graph.config.settings import TraversalSettings
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import (
    NotFoundError,
    TraversalCancelledError,
    TraversalTimeoutError,
)
from intel_graph.graph_store.inputs import (
    NeighborsRequest,
    ShortestPathRequest,
    TraverseRequest,
    enum_values,
    parse_input,
)
from intel_graph.storage import (
    AuditLogRepository,
    Database,
    EdgeRecord,
    EdgeRepository,
    GraphEventType,
    NodeRecord,
    NodeRepository,
    TraversalDirection,
)
from intel_graph.utils.logging import get_logger
from intel_graph.utils.metrics import time_traversal

logger = get_logger(__name__)


@dataclass
class TraversalPath:
    """Route from the start node to one visited node."""

    node_ids: list[str]
    edge_ids: list[str] = field(default_factory=list)
    total_weight: float = 0.0

    @property
    def length(self) -> int:
        return len(self.edge_ids)

    @property
    def end_node_id(self) -> str:
        return self.node_ids[-1]

    def to_dict(self) -> dict:
        return {
            "end_node_id": self.end_node_id,
            "node_ids": list(self.node_ids),
            "edge_ids": list(self.edge_ids),
            "length": self.length,
            "total_weight": self.total_weight,
        }


@dataclass
class TraversalResult:
    start_node: NodeRecord
    nodes: list[NodeRecord]
    paths: list[TraversalPath]
    truncated: bool = False
    execution_time_ms: float = 0.0

    @property
    def depths(self) -> dict[str, int]:
        depths = {self.start_node.id: 0}
        depths.update({path.end_node_id: path.length for path in self.paths})
        return depths

    def to_dict(self) -> dict:
        return {
            "start_node": self.start_node.to_dict(),
            "nodes": [node.to_dict() for node in self.nodes],
            "paths": [path.to_dict() for path in self.paths],
            "depths": self.depths,
            "truncated": self.truncated,
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass
class PathResult:
    """
    A shortest path as node and edge records.

    The search counts hops only; ``total_weight`` is reported for
    information and played no part in choosing the path.
    """

    nodes: list[NodeRecord]
    edges: list[EdgeRecord]

    @property
    def length(self) -> int:
        return len(self.edges)

    @property
    def total_weight(self) -> float:
        return sum(edge.weight for edge in self.edges)

    def to_dict(self) -> dict:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "length": self.length,
            "total_weight": self.total_weight,
        }


@dataclass
class Neighbor:
    node: NodeRecord
    edge: EdgeRecord
    direction: TraversalDirection

    def to_dict(self) -> dict:
        return {
            "node": self.node.to_dict(),
            "edge": self.edge.to_dict(),
            "direction": self.direction.value,
        }


class _Budget:
    """Wall-clock budget and cancel token, checked once per expansion."""

    def __init__(self, timeout_seconds: float | None, cancel: threading.Event | None) -> None:
        self.timeout_seconds = timeout_seconds
        self.cancel = cancel
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    def check(self, visited: int) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise TraversalCancelledError("Traversal cancelled", {"visited": visited})
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise TraversalTimeoutError(
                f"Traversal exceeded {self.timeout_seconds}s budget",
                timeout_seconds=self.timeout_seconds,
                visited=visited,
            )


def _can_follow(edge: EdgeRecord, current: str, direction: TraversalDirection) -> bool:
    if direction is TraversalDirection.BOTH or edge.is_bidirectional:
        return True
    if direction is TraversalDirection.OUTGOING:
        return edge.source_node_id == current
    return edge.target_node_id == current


class TraversalEngine:
    """
    Multi-hop exploration from a start node.

    Example:
        >>> engine = TraversalEngine(database, audit)
        >>> result = engine.traverse(ctx, {"start_node_id": a.id, "direction": "outgoing"})
        >>> path = engine.find_shortest_path(ctx, {"start_node_id": a.id, "end_node_id": c.id})
    """

    def __init__(
        self,
        database: Database,
        audit: AuditLog,
        settings: TraversalSettings | None = None,
    ) -> None:
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.audit = audit
        self.settings = settings or TraversalSettings()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database | None = None,
        audit: AuditLog | None = None,
    ) -> "TraversalEngine":
        if database is None:
            database = Database.from_settings(settings)
        if audit is None:
            audit = AuditLog(AuditLogRepository(database))
        return cls(database, audit, settings.traversal)

    def traverse(
        self,
        ctx: GraphContext,
        request: TraverseRequest | Mapping[str, Any],
        cancel: threading.Event | None = None,
    ) -> TraversalResult:
        """
        Breadth-first expansion from ``start_node_id``.

        A node is visited once, through the first path that reaches it.
        Nodes failing the type filter or marked inactive are never added,
        so nothing is reached through them.

        Raises:
            NotFoundError: If the start node is missing or inactive
            TraversalTimeoutError: If the wall-clock budget runs out
            TraversalCancelledError: If ``cancel`` is set
        """
        request = parse_input(TraverseRequest, request)
        with time_traversal():
            result = self.run_traversal(ctx, request, cancel)

        self.audit.record(
            ctx,
            GraphEventType.TRAVERSAL_EXECUTED,
            node_id=request.start_node_id,
            query=request.model_dump(mode="json"),
            result_count=len(result.nodes),
            execution_time_ms=result.execution_time_ms,
        )
        return result

    def run_traversal(
        self,
        ctx: GraphContext,
        request: TraverseRequest,
        cancel: threading.Event | None = None,
    ) -> TraversalResult:
        """Traversal without auditing, for callers that record their own entry."""
        started = time.perf_counter()
        start = self.nodes.get(ctx.tenant_id, request.start_node_id)
        if start is None or not start.is_active:
            raise NotFoundError("node", request.start_node_id)

        max_depth = request.max_depth or self.settings.default_max_depth
        limit = request.limit or self.settings.default_limit
        edge_types = enum_values(request.edge_types)
        node_types = set(enum_values(request.node_types) or ())
        budget = self._budget(request.timeout_seconds, cancel)

        paths: dict[str, TraversalPath] = {start.id: TraversalPath(node_ids=[start.id])}
        visited = [start]
        queue = deque([start.id])
        truncated = False

        while queue and not truncated:
            current = queue.popleft()
            current_path = paths[current]
            if current_path.length >= max_depth:
                continue
            budget.check(len(visited))

            candidates = []
            for edge in self.edges.for_node(ctx.tenant_id, current, edge_types=edge_types):
                if not _can_follow(edge, current, request.direction):
                    continue
                other = edge.other_end(current)
                if other != current and other not in paths:
                    candidates.append((other, edge))

            found = self.nodes.get_many(ctx.tenant_id, [other for other, _ in candidates])
            for other, edge in candidates:
                node = found.get(other)
                if other in paths or node is None or not node.is_active:
                    continue
                if node_types and node.node_type.value not in node_types:
                    continue
                if len(visited) >= limit:
                    truncated = True
                    break
                paths[other] = TraversalPath(
                    node_ids=current_path.node_ids + [other],
                    edge_ids=current_path.edge_ids + [edge.id],
                    total_weight=current_path.total_weight + edge.weight,
                )
                visited.append(node)
                queue.append(other)

        if truncated:
            logger.debug(f"Traversal from {start.id} stopped at limit {limit}")

        return TraversalResult(
            start_node=start,
            nodes=visited,
            paths=[paths[node.id] for node in visited[1:]],
            truncated=truncated,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    def find_shortest_path(
        self,
        ctx: GraphContext,
        request: ShortestPathRequest | Mapping[str, Any],
        cancel: threading.Event | None = None,
    ) -> PathResult | None:
        """
        Fewest-hop path between two nodes, ignoring edge direction.

        Returns:
            The path, or None if either endpoint is missing or inactive or
            no path of at most ``max_depth`` hops exists
        """
        request = parse_input(ShortestPathRequest, request)
        started = time.perf_counter()
        with time_traversal():
            path = self.run_shortest_path(ctx, request, cancel)

        self.audit.record(
            ctx,
            GraphEventType.TRAVERSAL_EXECUTED,
            node_id=request.start_node_id,
            query=request.model_dump(mode="json"),
            metadata={
                "end_node_id": request.end_node_id,
                "path_length": path.length if path else None,
            },
            result_count=len(path.nodes) if path else 0,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )
        return path

    def run_shortest_path(
        self,
        ctx: GraphContext,
        request: ShortestPathRequest,
        cancel: threading.Event | None = None,
    ) -> PathResult | None:
        start_id, end_id = request.start_node_id, request.end_node_id
        endpoints = self.nodes.get_many(ctx.tenant_id, [start_id, end_id])
        for node_id in (start_id, end_id):
            node = endpoints.get(node_id)
            if node is None or not node.is_active:
                return None
        if start_id == end_id:
            return PathResult(nodes=[endpoints[start_id]], edges=[])

        max_depth = request.max_depth or self.settings.shortest_path_max_depth
        edge_types = enum_values(request.edge_types)
        budget = self._budget(request.timeout_seconds, cancel)

        # node id -> (previous node id, edge used to reach it)
        came_from: dict[str, tuple[str | None, EdgeRecord | None]] = {start_id: (None, None)}
        depth = {start_id: 0}
        queue = deque([start_id])

        while queue:
            current = queue.popleft()
            if current == end_id:
                return self._rebuild(ctx, came_from, end_id)
            if depth[current] >= max_depth:
                continue
            budget.check(len(came_from))

            edges = self.edges.for_node(ctx.tenant_id, current, edge_types=edge_types)
            fresh = [
                edge.other_end(current) for edge in edges
                if edge.other_end(current) not in came_from
            ]
            active = self.nodes.active_ids(ctx.tenant_id, fresh)
            for edge in edges:
                other = edge.other_end(current)
                if other in came_from or other not in active:
                    continue
                came_from[other] = (current, edge)
                depth[other] = depth[current] + 1
                queue.append(other)

        return None

    def neighbors(
        self,
        ctx: GraphContext,
        request: NeighborsRequest | Mapping[str, Any],
    ) -> list[Neighbor]:
        """Active nodes one hop from ``node_id`` with the edge that links them."""
        request = parse_input(NeighborsRequest, request)
        origin = self.nodes.get(ctx.tenant_id, request.node_id)
        if origin is None:
            raise NotFoundError("node", request.node_id)

        edges = [
            edge for edge in self.edges.for_node(
                ctx.tenant_id, origin.id, edge_types=enum_values(request.edge_types)
            )
            if _can_follow(edge, origin.id, request.direction) and edge.other_end(origin.id) != origin.id
        ]
        found = self.nodes.get_many(ctx.tenant_id, [edge.other_end(origin.id) for edge in edges])

        result: list[Neighbor] = []
        for edge in edges:
            node = found.get(edge.other_end(origin.id))
            if node is None or not node.is_active:
                continue
            direction = (
                TraversalDirection.OUTGOING
                if edge.source_node_id == origin.id
                else TraversalDirection.INCOMING
            )
            result.append(Neighbor(node=node, edge=edge, direction=direction))
            if len(result) >= request.limit:
                break
        return result

    def _rebuild(
        self,
        ctx: GraphContext,
        came_from: dict[str, tuple[str | None, EdgeRecord | None]],
        end_id: str,
    ) -> PathResult:
        node_ids = [end_id]
        edges: list[EdgeRecord] = []
        previous, edge = came_from[end_id]
        while previous is not None and edge is not None:
            node_ids.append(previous)
            edges.append(edge)
            previous, edge = came_from[previous]
        node_ids.reverse()
        edges.reverse()

        found = self.nodes.get_many(ctx.tenant_id, node_ids)
        return PathResult(nodes=[found[node_id] for node_id in node_ids], edges=edges)

    def _budget(self, timeout_seconds: float | None, cancel: threading.Event | None) -> _Budget:
        return _Budget(timeout_seconds or self.settings.timeout_seconds, cancel)
