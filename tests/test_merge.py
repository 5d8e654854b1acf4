"""
Tests for node merging.
"""

import pytest

from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import DatabaseError, InvalidInputError, MergeError, NotFoundError
from intel_graph.graph_store.merge import fold_properties, union_ordered
from intel_graph.service import IntelligenceGraph
from intel_graph.storage import GraphEventType


@pytest.fixture
def duplicates(graph: IntelligenceGraph, ctx: GraphContext) -> dict:
    """
    Two copies of one company plus a partner linked to both.

    first -> second (related_to), partner -> second (mentions),
    partner -> first (mentions).
    """
    first = graph.create_node(ctx, {
        "node_type": "organization",
        "label": "Acme",
        "tags": ["customer"],
        "properties": {"score": 1, "region": "EU"},
    })
    second = graph.create_node(ctx, {
        "node_type": "organization",
        "label": "ACME Corp",
        "tags": ["customer", "enterprise"],
        "categories": ["tier-1"],
        "properties": {"score": 2},
    })
    partner = graph.create_node(ctx, {"node_type": "journalist", "label": "Reporter"})
    between = graph.create_edge(ctx, {
        "source_node_id": first.id,
        "target_node_id": second.id,
        "edge_type": "related_to",
    })
    to_second = graph.create_edge(ctx, {
        "source_node_id": partner.id,
        "target_node_id": second.id,
        "edge_type": "mentions",
    })
    to_first = graph.create_edge(ctx, {
        "source_node_id": partner.id,
        "target_node_id": first.id,
        "edge_type": "mentions",
    })
    return {
        "first": first,
        "second": second,
        "partner": partner,
        "between": between,
        "to_second": to_second,
        "to_first": to_first,
    }


class TestMergeHelpers:
    """Tests for the pure merge helpers."""

    def test_union_ordered(self):
        """Union should keep first-seen order without duplicates."""
        assert union_ordered([["a", "b"], ["b", "c"], ["a"]]) == ["a", "b", "c"]

    def test_fold_properties_later_wins(self, graph: IntelligenceGraph, ctx: GraphContext,
                                        duplicates: dict):
        """A later node's value should override an earlier one."""
        merged = fold_properties([duplicates["first"], duplicates["second"]])

        assert merged == {"score": 2, "region": "EU"}


class TestMergeNodes:
    """Tests for merge_nodes."""

    def test_keep_first_survivor(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """keep_first should keep the first-created node."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["second"].id, duplicates["first"].id],
            "strategy": "keep_first",
        })

        assert result.merged_node.id == duplicates["first"].id
        assert result.merged_node_ids == [duplicates["second"].id]
        assert graph.get_node(ctx, duplicates["second"].id) is None

    def test_properties_and_tags_folded(self, graph: IntelligenceGraph, ctx: GraphContext,
                                        duplicates: dict):
        """The survivor should carry the folded properties and unioned lists."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
        })
        survivor = graph.get_node(ctx, result.merged_node.id)

        assert survivor.properties["score"] == 2
        assert survivor.properties["region"] == "EU"
        assert survivor.tags == ["customer", "enterprise"]
        assert survivor.categories == ["tier-1"]
        assert survivor.label == "Acme"

    def test_keep_newest_survivor(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """keep_newest should keep the last-created node."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_newest",
            "new_label": "Acme Corporation",
        })

        assert result.merged_node.id == duplicates["second"].id
        assert result.merged_node.label == "Acme Corporation"

    def test_explicit_target(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """A target among the sources should survive."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
            "target_node_id": duplicates["second"].id,
        })

        assert result.merged_node.id == duplicates["second"].id

    def test_target_not_a_source(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """A target outside the sources should raise MergeError."""
        with pytest.raises(MergeError):
            graph.merge_nodes(ctx, {
                "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
                "strategy": "keep_first",
                "target_node_id": duplicates["partner"].id,
            })

    def test_create_new(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """create_new should replace every source with a fresh node."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "create_new",
            "new_label": "Acme Group",
        })

        assert result.merged_node.id not in (duplicates["first"].id, duplicates["second"].id)
        assert result.merged_node.label == "Acme Group"
        assert sorted(result.merged_node_ids) == sorted([duplicates["first"].id, duplicates["second"].id])
        assert graph.get_node(ctx, duplicates["first"].id) is None

    def test_edges_repointed_without_self_loops(self, graph: IntelligenceGraph, ctx: GraphContext,
                                                duplicates: dict):
        """Edges should move to the survivor and never loop on it."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
        })
        survivor_id = result.merged_node.id

        moved = graph.get_edge(ctx, duplicates["to_second"].id)
        edges = graph.list_edges(ctx, {"is_active": None, "limit": 100}).items

        assert moved.target_node_id == survivor_id
        assert graph.get_edge(ctx, duplicates["between"].id) is None
        assert all(e.source_node_id != e.target_node_id for e in edges)

    def test_edge_accounting(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """Preserved plus removed should equal the edges that touched removed nodes."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
        })

        assert result.edges_preserved == 1
        assert result.edges_removed == 1
        assert graph.get_stats(ctx)["total_edges"] == 2

    def test_edges_dropped_when_not_preserved(self, graph: IntelligenceGraph, ctx: GraphContext,
                                              duplicates: dict):
        """preserve_edges=False should delete the removed nodes' edges."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
            "preserve_edges": False,
        })

        assert result.edges_preserved == 0
        assert result.edges_removed == 2
        assert graph.get_edge(ctx, duplicates["to_second"].id) is None
        assert graph.get_edge(ctx, duplicates["to_first"].id) is not None

    def test_failed_delete_keeps_earlier_writes(self, graph: IntelligenceGraph, ctx: GraphContext,
                                                duplicates: dict, monkeypatch):
        """A failure while deleting should leave the moved edges in place and skip the audit."""
        def locked(tenant_id, node_id):
            raise DatabaseError("database is locked")

        monkeypatch.setattr(graph.merger.nodes, "delete", locked)

        with pytest.raises(DatabaseError):
            graph.merge_nodes(ctx, {
                "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
                "strategy": "keep_first",
            })

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.NODE_MERGED)

        assert graph.get_edge(ctx, duplicates["to_second"].id).target_node_id == duplicates["first"].id
        assert graph.get_node(ctx, duplicates["second"].id) is not None
        assert entries == []

    def test_missing_source(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """An unknown source should raise NotFoundError before any write."""
        with pytest.raises(NotFoundError):
            graph.merge_nodes(ctx, {
                "source_node_ids": [duplicates["first"].id, "missing"],
                "strategy": "keep_first",
            })

        assert graph.get_node(ctx, duplicates["first"].id).label == "Acme"

    def test_source_count_bounds(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """A single source should be rejected."""
        with pytest.raises(InvalidInputError):
            graph.merge_nodes(ctx, {
                "source_node_ids": [duplicates["first"].id],
                "strategy": "keep_first",
            })

    def test_duplicate_sources_rejected(self, graph: IntelligenceGraph, ctx: GraphContext,
                                        duplicates: dict):
        """Repeated ids should be rejected."""
        with pytest.raises(InvalidInputError):
            graph.merge_nodes(ctx, {
                "source_node_ids": [duplicates["first"].id, duplicates["first"].id],
                "strategy": "keep_first",
            })

    def test_merge_audited(self, graph: IntelligenceGraph, ctx: GraphContext, duplicates: dict):
        """A merge should leave one node_merged entry."""
        result = graph.merge_nodes(ctx, {
            "source_node_ids": [duplicates["first"].id, duplicates["second"].id],
            "strategy": "keep_first",
        })

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.NODE_MERGED)

        assert len(entries) == 1
        assert entries[0].node_id == result.merged_node.id
        assert entries[0].metadata == {"edges_preserved": 1, "edges_removed": 1}
