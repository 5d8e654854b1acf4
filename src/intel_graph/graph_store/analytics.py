"""
Centrality and clustering over the active graph.

Degree centrality is normalized by the largest degree in the node set and
doubles as the PageRank score; there is no iterative PageRank. Clusters
are connected components of the undirected view of active edges.
Community fields are left unpopulated.
"""

import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.graph_store.inputs import ComputeMetricsRequest, enum_values, parse_input
from intel_graph.storage import (
    Database,
    EdgeRecord,
    EdgeRepository,
    GraphEventType,
    NodeRecord,
    NodeRepository,
    utc_now,
)
from intel_graph.storage.models import format_datetime
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)

TOP_NODES = 10


@dataclass
class MetricsComputation:
    metrics: dict
    nodes_updated: int
    clusters_identified: int
    communities_detected: int = 0
    execution_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "metrics": self.metrics,
            "nodes_updated": self.nodes_updated,
            "clusters_identified": self.clusters_identified,
            "communities_detected": self.communities_detected,
            "execution_time_ms": self.execution_time_ms,
        }


def degree_counts(node_ids: set[str], edges: list[EdgeRecord]) -> Counter:
    """Outgoing plus incoming edge count per node."""
    degrees: Counter = Counter({node_id: 0 for node_id in node_ids})
    for edge in edges:
        degrees[edge.source_node_id] += 1
        degrees[edge.target_node_id] += 1
    return degrees


def connected_components(node_ids: list[str], edges: list[EdgeRecord]) -> list[list[str]]:
    """
    Components of the undirected graph, in first-seen node order.

    Isolated nodes come back as single-member components.
    """
    adjacency: dict[str, set[str]] = {node_id: set() for node_id in node_ids}
    for edge in edges:
        adjacency[edge.source_node_id].add(edge.target_node_id)
        adjacency[edge.target_node_id].add(edge.source_node_id)

    seen: set[str] = set()
    components = []
    for root in node_ids:
        if root in seen:
            continue
        seen.add(root)
        component = [root]
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for neighbor in adjacency[current]:
                if neighbor not in seen:
                    seen.add(neighbor)
                    component.append(neighbor)
                    queue.append(neighbor)
        components.append(component)
    return components


def _ranked(nodes: list[NodeRecord], column: str) -> list[dict]:
    return [
        {
            "id": node.id,
            "label": node.label,
            "node_type": node.node_type.value,
            "score": getattr(node, column),
        }
        for node in nodes
    ]


class MetricsEngine:
    """
    Writes centrality and cluster fields onto nodes and reads aggregate
    statistics back from them.

    ``get_metrics`` reports the stored values; call ``compute_metrics``
    first for fresh numbers.
    """

    def __init__(self, database: Database, audit: AuditLog) -> None:
        self.db = database
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.audit = audit

    def compute_metrics(
        self,
        ctx: GraphContext,
        request: ComputeMetricsRequest | Mapping[str, Any] | None = None,
    ) -> MetricsComputation:
        request = parse_input(ComputeMetricsRequest, request)
        started = time.perf_counter()

        nodes = self.nodes.list_active(ctx.tenant_id, enum_values(request.node_types))
        node_ids = [node.id for node in nodes]
        members = set(node_ids)
        edges = [
            edge for edge in self.edges.list_active(ctx.tenant_id, enum_values(request.edge_types))
            if edge.source_node_id in members and edge.target_node_id in members
        ]
        updated_at = format_datetime(utc_now())

        clusters: list[list[str]] = []
        with self.db.transaction():
            if request.compute_centrality:
                degrees = degree_counts(members, edges)
                max_degree = max(max(degrees.values(), default=0), 1)
                self.nodes.set_metrics(ctx.tenant_id, [
                    (degrees[nid] / max_degree, degrees[nid] / max_degree, updated_at, nid)
                    for nid in node_ids
                ])
            if request.compute_clusters:
                clusters = connected_components(node_ids, edges)
                self.nodes.set_clusters(ctx.tenant_id, [
                    (cluster_id, updated_at, nid)
                    for cluster_id, component in ((str(uuid.uuid4()), c) for c in clusters)
                    for nid in component
                ])

        nodes_updated = len(nodes) if (request.compute_centrality or request.compute_clusters) else 0
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Computed metrics for tenant {ctx.tenant_id}: {nodes_updated} node(s), "
            f"{len(clusters)} cluster(s) in {elapsed_ms:.1f}ms"
        )

        self.audit.record(
            ctx,
            GraphEventType.METRICS_COMPUTED,
            query=request.model_dump(mode="json", exclude_none=True),
            metadata={"clusters_identified": len(clusters)},
            result_count=nodes_updated,
            execution_time_ms=elapsed_ms,
        )
        return MetricsComputation(
            metrics=self.get_metrics(ctx),
            nodes_updated=nodes_updated,
            clusters_identified=len(clusters),
            execution_time_ms=elapsed_ms,
        )

    def get_metrics(self, ctx: GraphContext) -> dict:
        """Aggregate statistics from stored node and edge fields."""
        tenant = ctx.tenant_id
        active_nodes = self.nodes.count(tenant, active_only=True)
        active_edges = self.edges.count(tenant, active_only=True)
        possible = active_nodes * (active_nodes - 1)

        return {
            "total_nodes": self.nodes.count(tenant),
            "active_nodes": active_nodes,
            "nodes_by_type": self.nodes.count_by_type(tenant),
            "total_edges": self.edges.count(tenant),
            "active_edges": active_edges,
            "edges_by_type": self.edges.count_by_type(tenant),
            "density": active_edges / possible if possible else 0.0,
            "avg_degree": 2 * active_edges / active_nodes if active_nodes else 0.0,
            "cluster_count": self.nodes.count_clusters(tenant),
            "community_count": 0,
            "top_nodes_by_degree": _ranked(
                self.nodes.top_by(tenant, "degree_centrality", TOP_NODES), "degree_centrality"
            ),
            "top_nodes_by_pagerank": _ranked(
                self.nodes.top_by(tenant, "pagerank_score", TOP_NODES), "pagerank_score"
            ),
            "computed_at": format_datetime(utc_now()),
        }

    def summarize_clusters(self, nodes: list[NodeRecord]) -> list[dict]:
        """Per-cluster size, type mix and most central member, largest first."""
        groups: dict[str, list[NodeRecord]] = {}
        for node in nodes:
            if node.cluster_id:
                groups.setdefault(node.cluster_id, []).append(node)

        summaries = []
        for cluster_id, members in groups.items():
            central = max(members, key=lambda n: (n.degree_centrality or 0.0, n.id))
            summaries.append({
                "cluster_id": cluster_id,
                "size": len(members),
                "node_types": dict(sorted(Counter(n.node_type.value for n in members).items())),
                "central_node_id": central.id,
                "central_node_label": central.label,
            })
        summaries.sort(key=lambda s: (-s["size"], s["cluster_id"]))
        return summaries
