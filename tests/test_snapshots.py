"""
Tests for snapshot generation.

Most tests run generation inline; DeferredTaskRunner holds tasks back to
observe the pending state.
"""

from concurrent.futures import Future

import pytest

from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import (
    DatabaseError,
    InvalidInputError,
    NotFoundError,
    SnapshotStateError,
)
from intel_graph.service import IntelligenceGraph
from intel_graph.snapshots import ThreadedTaskRunner
from intel_graph.snapshots.manager import diff_snapshots
from intel_graph.storage import GraphEventType, SnapshotRecord, SnapshotRepository, SnapshotStatus
from intel_graph.utils.metrics import Metrics


def fail_once(monkeypatch, name: str) -> None:
    """Make SnapshotRepository.<name> raise a locked-database error on its first call."""
    original = getattr(SnapshotRepository, name)
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise DatabaseError("database is locked")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(SnapshotRepository, name, flaky)


class DeferredTaskRunner:
    """Queues tasks until run_all is called."""

    def __init__(self) -> None:
        self.tasks: list[tuple] = []

    def submit(self, fn, *args) -> Future:
        future: Future = Future()
        self.tasks.append((future, fn, args))
        return future

    def run_all(self) -> None:
        while self.tasks:
            future, fn, args = self.tasks.pop(0)
            future.set_result(fn(*args))

    def shutdown(self, wait: bool = True) -> None:
        pass


class TestDiffSnapshots:
    """Tests for diff_snapshots."""

    def test_id_level_diff(self):
        """Added and removed ids should be reported; modifications are not tracked."""
        previous = SnapshotRecord(
            id="s1", tenant_id="t", name="old",
            node_ids=["a", "b"], edge_ids=["e1"],
        )

        diff = diff_snapshots(previous, ["b", "c"], ["e1", "e2"])

        assert diff["added_node_ids"] == ["c"]
        assert diff["removed_node_ids"] == ["a"]
        assert diff["edges_added"] == 1
        assert diff["edges_removed"] == 0
        assert diff["nodes_modified"] == 0

    def test_falls_back_to_payload_ids(self):
        """A snapshot without id lists should be diffed through its payloads."""
        previous = SnapshotRecord(id="s1", tenant_id="t", name="old", nodes=[{"id": "a"}])

        diff = diff_snapshots(previous, ["a"], [])

        assert diff["nodes_added"] == 0
        assert diff["nodes_removed"] == 0


class TestCreateSnapshot:
    """Tests for create_snapshot with inline generation."""

    def test_returns_pending_then_completes(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """The returned record is pending; the stored one is complete."""
        pending = graph.create_snapshot(ctx, {"name": "Weekly"})
        done = graph.get_snapshot(ctx, pending.id)

        assert pending.status is SnapshotStatus.PENDING
        assert done.status is SnapshotStatus.COMPLETE
        assert done.node_count == 4
        assert done.edge_count == 2
        assert len(done.nodes) == 4
        assert done.started_at is not None
        assert done.completed_at is not None
        assert done.created_by == "analyst-1"

    def test_metrics_embedded(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """The snapshot should carry the tenant's metrics."""
        graph.compute_metrics(ctx)

        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "s"}).id)

        assert snapshot.metrics["total_nodes"] == 4
        assert snapshot.cluster_count == 2
        assert [c["size"] for c in snapshot.clusters] == [3, 1]

    def test_metrics_only(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """metrics_only should keep counts and ids but no payloads."""
        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {
            "name": "m",
            "snapshot_type": "metrics_only",
        }).id)

        assert snapshot.nodes is None
        assert snapshot.edges is None
        assert snapshot.node_count == 4
        assert len(snapshot.node_ids) == 4

    def test_exclude_nodes(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """include_nodes=False should drop only the node payload."""
        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {
            "name": "edges only",
            "include_nodes": False,
        }).id)

        assert snapshot.nodes is None
        assert len(snapshot.edges) == 2

    def test_node_type_filter(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Only edges between exported nodes should be included."""
        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {
            "name": "competitors",
            "node_types": ["competitor"],
        }).id)

        assert snapshot.node_count == 2
        assert snapshot.edge_ids == [chain["bc"].id]

    def test_inactive_not_exported(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Inactive nodes and their edges should be left out."""
        graph.update_node(ctx, chain["initech"].id, {"is_active": False})

        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "s"}).id)

        assert snapshot.node_count == 3
        assert snapshot.edge_count == 0

    def test_first_snapshot_has_no_diff(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Without a previous snapshot there is nothing to diff."""
        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "first"}).id)

        assert snapshot.diff is None
        assert snapshot.previous_snapshot_id is None

    def test_diff_against_previous(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """A second snapshot should diff against the first."""
        first = graph.create_snapshot(ctx, {"name": "first"})
        graph.delete_node(ctx, chain["umbrella"].id)
        added = graph.create_node(ctx, {"node_type": "market_trend", "label": "Reshoring"})

        second = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "second"}).id)

        assert second.previous_snapshot_id == first.id
        assert second.diff["added_node_ids"] == [added.id]
        assert second.diff["removed_node_ids"] == [chain["umbrella"].id]
        assert second.diff["edges_added"] == 0

    def test_diff_disabled(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """compute_diff=False should skip the diff."""
        graph.create_snapshot(ctx, {"name": "first"})

        second = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {
            "name": "second",
            "compute_diff": False,
        }).id)

        assert second.diff is None

    def test_incremental_always_diffs(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Incremental snapshots should diff even when compute_diff is off."""
        graph.create_snapshot(ctx, {"name": "first"})

        second = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {
            "name": "second",
            "snapshot_type": "incremental",
            "compute_diff": False,
        }).id)

        assert second.diff is not None
        assert second.diff["nodes_added"] == 0

    def test_failure_recorded(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict, monkeypatch):
        """A generation error should mark the snapshot failed, not raise."""
        def boom(ctx):
            raise RuntimeError("metrics store unavailable")

        monkeypatch.setattr(graph.metrics, "get_metrics", boom)

        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "broken"}).id)

        assert snapshot.status is SnapshotStatus.FAILED
        assert snapshot.error_message == "metrics store unavailable"
        assert Metrics.get().get_counter("snapshots_failed") == 1

    def test_completion_write_failure_recorded(self, graph: IntelligenceGraph, ctx: GraphContext,
                                               chain: dict, monkeypatch):
        """A failed completion write should leave the snapshot failed and regenerable."""
        fail_once(monkeypatch, "update_fields")

        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "locked"}).id)

        assert snapshot.status is SnapshotStatus.FAILED
        assert "database is locked" in snapshot.error_message
        assert Metrics.get().get_counter("snapshots_failed") == 1

        monkeypatch.undo()
        graph.regenerate_snapshot(ctx, snapshot.id)
        done = graph.get_snapshot(ctx, snapshot.id)

        assert done.status is SnapshotStatus.COMPLETE
        assert done.node_count == 4

    def test_start_write_failure_recorded(self, graph: IntelligenceGraph, ctx: GraphContext,
                                          chain: dict, monkeypatch):
        """A failed move to generating should also end in failed."""
        fail_once(monkeypatch, "transition")

        snapshot = graph.get_snapshot(ctx, graph.create_snapshot(ctx, {"name": "locked"}).id)

        assert snapshot.status is SnapshotStatus.FAILED
        assert "database is locked" in snapshot.error_message

        monkeypatch.undo()
        graph.regenerate_snapshot(ctx, snapshot.id)

        assert graph.get_snapshot(ctx, snapshot.id).status is SnapshotStatus.COMPLETE

    def test_completion_audited(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Completed snapshots should be audited with their counts."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.SNAPSHOT_CREATED)

        assert len(entries) == 1
        assert entries[0].snapshot_id == snapshot.id
        assert entries[0].metadata == {"node_count": 4, "edge_count": 2}

    def test_invalid_request(self, graph: IntelligenceGraph, ctx: GraphContext):
        """An empty name should be rejected before anything is stored."""
        with pytest.raises(InvalidInputError):
            graph.create_snapshot(ctx, {"name": ""})

        assert graph.list_snapshots(ctx).total == 0


class TestRegenerateSnapshot:
    """Tests for regenerate_snapshot."""

    def test_regenerate_complete(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Regenerating should pick up changes made since."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})
        graph.create_node(ctx, {"node_type": "crisis_event", "label": "Recall"})

        pending = graph.regenerate_snapshot(ctx, snapshot.id)
        done = graph.get_snapshot(ctx, snapshot.id)

        assert pending.status is SnapshotStatus.PENDING
        assert done.status is SnapshotStatus.COMPLETE
        assert done.node_count == 5

    def test_regenerate_failed(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict, monkeypatch):
        """A failed snapshot should be regenerable once the cause is gone."""
        monkeypatch.setattr(graph.metrics, "get_metrics", lambda ctx: 1 / 0)
        snapshot = graph.create_snapshot(ctx, {"name": "s"})
        monkeypatch.undo()

        graph.regenerate_snapshot(ctx, snapshot.id)
        done = graph.get_snapshot(ctx, snapshot.id)

        assert done.status is SnapshotStatus.COMPLETE
        assert done.error_message is None

    def test_regenerate_audited(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Regeneration should leave its own audit entry."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})
        graph.regenerate_snapshot(ctx, snapshot.id)

        entries, _ = graph.list_audit_logs(ctx, event_type=GraphEventType.SNAPSHOT_REGENERATED)

        assert [e.snapshot_id for e in entries] == [snapshot.id]

    def test_regenerate_missing(self, graph: IntelligenceGraph, ctx: GraphContext):
        """An unknown snapshot should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            graph.regenerate_snapshot(ctx, "missing")

    def test_regenerate_other_tenant(self, graph: IntelligenceGraph, ctx: GraphContext,
                                     other_ctx: GraphContext, chain: dict):
        """Another tenant's snapshot should look missing."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})

        with pytest.raises(NotFoundError):
            graph.regenerate_snapshot(other_ctx, snapshot.id)
        assert graph.get_snapshot(other_ctx, snapshot.id) is None


class TestPendingSnapshots:
    """Tests that hold generation back."""

    @pytest.fixture
    def deferred(self, graph: IntelligenceGraph) -> DeferredTaskRunner:
        runner = DeferredTaskRunner()
        graph.snapshots.runner = runner
        return runner

    def test_pending_until_run(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict,
                               deferred: DeferredTaskRunner):
        """A queued snapshot should stay pending until its task runs."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})

        assert graph.get_snapshot(ctx, snapshot.id).status is SnapshotStatus.PENDING

        deferred.run_all()

        assert graph.get_snapshot(ctx, snapshot.id).status is SnapshotStatus.COMPLETE

    def test_regenerate_while_pending(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict,
                                      deferred: DeferredTaskRunner):
        """A pending snapshot should not be regenerated."""
        snapshot = graph.create_snapshot(ctx, {"name": "s"})

        with pytest.raises(SnapshotStateError) as exc_info:
            graph.regenerate_snapshot(ctx, snapshot.id)

        assert exc_info.value.details["status"] == "pending"

    def test_list_by_status(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict,
                            deferred: DeferredTaskRunner):
        """The status filter should separate queued from finished snapshots."""
        graph.create_snapshot(ctx, {"name": "done"})
        deferred.run_all()
        graph.create_snapshot(ctx, {"name": "queued"})

        pending = graph.list_snapshots(ctx, status="pending")
        complete = graph.list_snapshots(ctx, status=SnapshotStatus.COMPLETE)

        assert [s.name for s in pending.items] == ["queued"]
        assert [s.name for s in complete.items] == ["done"]
        assert graph.list_snapshots(ctx).total == 2


class TestListing:
    """Tests for list_snapshots and the stats summary."""

    def test_unknown_status(self, graph: IntelligenceGraph, ctx: GraphContext):
        """An unknown status should be rejected."""
        with pytest.raises(InvalidInputError):
            graph.list_snapshots(ctx, status="archived")

    def test_newest_first(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """Snapshots should be listed newest first."""
        graph.create_snapshot(ctx, {"name": "one"})
        graph.create_snapshot(ctx, {"name": "two"})

        assert [s.name for s in graph.list_snapshots(ctx).items] == ["two", "one"]

    def test_stats_summary(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """get_stats should list recent snapshots without their payloads."""
        graph.create_snapshot(ctx, {"name": "s"})

        stats = graph.get_stats(ctx)

        assert stats["total_snapshots"] == 1
        assert stats["recent_snapshots"][0]["name"] == "s"
        assert "nodes" not in stats["recent_snapshots"][0]
        assert stats["active_nodes"] == 4
        assert len(stats["recent_nodes"]) == 4


class TestThreadedTaskRunner:
    """Tests for background generation on worker threads."""

    def test_wait_for_snapshot(self, graph: IntelligenceGraph, ctx: GraphContext, chain: dict):
        """wait_for_snapshot should return the finished record."""
        graph.snapshots.runner = ThreadedTaskRunner(max_workers=1)

        snapshot = graph.create_snapshot(ctx, {"name": "threaded"})
        done = graph.wait_for_snapshot(ctx, snapshot.id, timeout=30)

        assert done.status is SnapshotStatus.COMPLETE
        assert done.node_count == 4

    def test_shutdown_is_repeatable(self):
        """Shutting down an idle runner twice should be harmless."""
        runner = ThreadedTaskRunner()
        runner.shutdown()
        runner.shutdown()
