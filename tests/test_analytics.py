"""
Tests for centrality and clustering.
"""

import pytest

from intel_graph.core.context import GraphContext
from intel_graph.graph_store.analytics import connected_components, degree_counts
from intel_graph.service import IntelligenceGraph
from intel_graph.storage import GraphEventType


class TestHelpers:
    """Tests for the pure graph helpers."""

    def test_components_include_isolated(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Isolated nodes should form their own component."""
        ids = [chain[k].id for k in ("acme", "initech", "globex", "umbrella")]
        edges = [chain["ab"], chain["bc"]]

        components = connected_components(ids, edges)

        assert [sorted(c) for c in components] == [sorted(ids[:3]), [ids[3]]]

    def test_degree_counts(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Degree should count both edge ends."""
        ids = {chain[k].id for k in ("acme", "initech", "globex", "umbrella")}

        degrees = degree_counts(ids, [chain["ab"], chain["bc"]])

        assert degrees[chain["initech"].id] == 2
        assert degrees[chain["umbrella"].id] == 0


class TestComputeMetrics:
    """Tests for compute_metrics."""

    def test_degree_centrality(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Centrality should be normalized by the highest degree."""
        result = graph.compute_metrics(ctx)

        assert result.nodes_updated == 4
        assert graph.get_node(ctx, chain["initech"].id).degree_centrality == pytest.approx(1.0)
        assert graph.get_node(ctx, chain["acme"].id).degree_centrality == pytest.approx(0.5)
        assert graph.get_node(ctx, chain["umbrella"].id).degree_centrality == pytest.approx(0.0)
        assert graph.get_node(ctx, chain["acme"].id).pagerank_score == pytest.approx(0.5)

    def test_clusters(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Connected nodes should share a cluster id."""
        result = graph.compute_metrics(ctx)
        acme = graph.get_node(ctx, chain["acme"].id)
        globex = graph.get_node(ctx, chain["globex"].id)
        umbrella = graph.get_node(ctx, chain["umbrella"].id)

        assert result.clusters_identified == 2
        assert acme.cluster_id == globex.cluster_id
        assert umbrella.cluster_id != acme.cluster_id

    def test_clusters_split_after_delete(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Removing the bridge node should split its component."""
        graph.delete_node(ctx, chain["initech"].id)

        result = graph.compute_metrics(ctx)

        assert result.clusters_identified == 3
        assert result.metrics["cluster_count"] == 3

    def test_skip_clusters(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """compute_clusters=False should leave cluster ids unset."""
        result = graph.compute_metrics(ctx, {"compute_clusters": False})

        assert result.clusters_identified == 0
        assert graph.get_node(ctx, chain["acme"].id).cluster_id is None

    def test_nothing_requested(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """With both passes off no node should be updated."""
        result = graph.compute_metrics(ctx, {"compute_centrality": False, "compute_clusters": False})

        assert result.nodes_updated == 0

    def test_edge_type_filter(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Only edges of the listed types should count."""
        graph.compute_metrics(ctx, {"edge_types": ["related_to"]})

        assert graph.get_node(ctx, chain["globex"].id).degree_centrality == pytest.approx(0.0)
        assert graph.get_node(ctx, chain["initech"].id).degree_centrality == pytest.approx(1.0)

    def test_audited(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """A computation should be audited with the cluster count."""
        graph.compute_metrics(ctx)

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.METRICS_COMPUTED)

        assert len(entries) == 1
        assert entries[0].metadata == {"clusters_identified": 2}
        assert entries[0].result_count == 4

    def test_tenant_isolation(self, graph: IntelligenceGraph, ctx: GraphContext,
                              other_ctx: GraphContext, chain: dict):
        """Computing for one tenant should not touch another's nodes."""
        graph.compute_metrics(other_ctx)

        assert graph.get_node(ctx, chain["acme"].id).degree_centrality is None


class TestGetMetrics:
    """Tests for get_metrics and summarize_clusters."""

    def test_aggregates(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Counts, density and average degree should reflect the graph."""
        metrics = graph.get_metrics(ctx)

        assert metrics["total_nodes"] == 4
        assert metrics["active_edges"] == 2
        assert metrics["density"] == pytest.approx(2 / 12)
        assert metrics["avg_degree"] == pytest.approx(1.0)
        assert metrics["community_count"] == 0
        assert metrics["nodes_by_type"] == {"competitor": 2, "organization": 1, "risk_factor": 1}

    def test_top_nodes_after_compute(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """The most central node should rank first."""
        graph.compute_metrics(ctx)

        metrics = graph.get_metrics(ctx)

        assert metrics["top_nodes_by_degree"][0]["label"] == "Initech"
        assert metrics["top_nodes_by_degree"][0]["score"] == pytest.approx(1.0)
        assert metrics["cluster_count"] == 2

    def test_top_nodes_empty_before_compute(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Nodes without stored scores should not be ranked."""
        assert graph.get_metrics(ctx)["top_nodes_by_pagerank"] == []

    def test_empty_graph(self, graph: IntelligenceGraph, ctx: GraphContext):
        """An empty tenant should report zeros, not fail."""
        metrics = graph.get_metrics(ctx)

        assert metrics["density"] == 0.0
        assert metrics["avg_degree"] == 0.0

    def test_summarize_clusters(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Summaries should be largest first with the most central member."""
        graph.compute_metrics(ctx)
        nodes = [graph.get_node(ctx, chain[k].id) for k in ("acme", "initech", "globex", "umbrella")]

        summaries = graph.metrics.summarize_clusters(nodes)

        assert [s["size"] for s in summaries] == [3, 1]
        assert summaries[0]["central_node_label"] == "Initech"
        assert summaries[0]["node_types"] == {"competitor": 2, "organization": 1}
