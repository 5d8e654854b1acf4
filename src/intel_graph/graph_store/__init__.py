"""
Graph store module.

Entity CRUD, queries, traversal, merging and metrics over the typed
node/edge graph.
"""

from intel_graph.graph_store.store import GraphStore, Page, NodeConnections, EdgeWithNodes
from intel_graph.graph_store.traversal import (
    TraversalEngine,
    TraversalPath,
    TraversalResult,
    PathResult,
    Neighbor,
)
from intel_graph.graph_store.queries import QueryEngine, GraphQueryResult, compile_filter
from intel_graph.graph_store.merge import MergeEngine, MergeResult
from intel_graph.graph_store.analytics import (
    MetricsEngine,
    MetricsComputation,
    connected_components,
    degree_counts,
)

__all__ = [
    # Entity store
    "GraphStore",
    "Page",
    "NodeConnections",
    "EdgeWithNodes",
    # Traversal
    "TraversalEngine",
    "TraversalPath",
    "TraversalResult",
    "PathResult",
    "Neighbor",
    # Queries
    "QueryEngine",
    "GraphQueryResult",
    "compile_filter",
    # Merge
    "MergeEngine",
    "MergeResult",
    # Metrics
    "MetricsEngine",
    "MetricsComputation",
    "connected_components",
    "degree_counts",
]
