"""
Snapshot lifecycle.

A snapshot is created as ``pending`` and generated by a background task:
``pending -> generating -> complete | failed``. Generation exports the
active graph, reads the stored metrics and optionally diffs the node and
edge id sets against the most recent completed snapshot. Failures are
written to the snapshot record and never reach the caller that created
it.
"""

import threading
import uuid
from concurrent.futures import Future
from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import InvalidInputError, NotFoundError, SnapshotStateError
from intel_graph.graph_store.analytics import MetricsEngine
from intel_graph.graph_store.inputs import SnapshotRequest, parse_input
from intel_graph.graph_store.store import Page
from intel_graph.snapshots.tasks import TaskRunner
from intel_graph.storage import (
    Database,
    EdgeRepository,
    GraphEventType,
    NodeRepository,
    SnapshotRecord,
    SnapshotRepository,
    SnapshotStatus,
    SnapshotType,
    utc_now,
)
from intel_graph.utils.logging import get_logger, get_logger_with_context
from intel_graph.utils.metrics import increment_snapshot_outcome

logger = get_logger(__name__)

REGENERABLE = (SnapshotStatus.COMPLETE, SnapshotStatus.FAILED)


def diff_snapshots(
    previous: SnapshotRecord,
    node_ids: list[str],
    edge_ids: list[str],
) -> dict:
    """
    Id-level difference between ``previous`` and the current export.

    Attribute changes are not tracked, so the modified counts stay 0.
    """
    prev_nodes = set(previous.node_ids or [n["id"] for n in previous.nodes or []])
    prev_edges = set(previous.edge_ids or [e["id"] for e in previous.edges or []])
    current_nodes, current_edges = set(node_ids), set(edge_ids)

    added_nodes = [nid for nid in node_ids if nid not in prev_nodes]
    removed_nodes = sorted(prev_nodes - current_nodes)
    added_edges = [eid for eid in edge_ids if eid not in prev_edges]
    removed_edges = sorted(prev_edges - current_edges)
    return {
        "nodes_added": len(added_nodes),
        "nodes_removed": len(removed_nodes),
        "nodes_modified": 0,
        "edges_added": len(added_edges),
        "edges_removed": len(removed_edges),
        "edges_modified": 0,
        "metrics_changes": {},
        "added_node_ids": added_nodes,
        "removed_node_ids": removed_nodes,
        "added_edge_ids": added_edges,
        "removed_edge_ids": removed_edges,
    }


class SnapshotManager:
    """
    Creates, regenerates and reads snapshots.

    Example:
        >>> manager = SnapshotManager(database, audit, metrics, ThreadedTaskRunner())
        >>> pending = manager.create_snapshot(ctx, {"name": "Weekly"})
        >>> done = manager.wait_for(ctx, pending.id)
        >>> done.status, done.node_count
    """

    def __init__(
        self,
        database: Database,
        audit: AuditLog,
        metrics: MetricsEngine,
        runner: TaskRunner,
        compute_diff_by_default: bool = True,
    ) -> None:
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.snapshots = SnapshotRepository(database)
        self.audit = audit
        self.metrics = metrics
        self.runner = runner
        self.compute_diff_by_default = compute_diff_by_default

        self._futures: dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    def create_snapshot(
        self,
        ctx: GraphContext,
        request: SnapshotRequest | Mapping[str, Any],
    ) -> SnapshotRecord:
        """Store a pending snapshot, queue its generation and return it at once."""
        request = parse_input(SnapshotRequest, request)
        options = request.model_dump(mode="json", exclude={"name", "description"})
        if options["compute_diff"] is None:
            options["compute_diff"] = self.compute_diff_by_default

        now = utc_now()
        snapshot = SnapshotRecord(
            id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_id,
            name=request.name,
            description=request.description,
            snapshot_type=request.snapshot_type,
            status=SnapshotStatus.PENDING,
            options=options,
            created_at=now,
            updated_at=now,
            created_by=ctx.actor_id,
        )
        self.snapshots.insert(snapshot)
        logger.info(f"Snapshot {snapshot.id} queued ({snapshot.snapshot_type.value})")

        self._submit(ctx, snapshot.id, options)
        return snapshot

    def regenerate_snapshot(self, ctx: GraphContext, snapshot_id: str) -> SnapshotRecord:
        """
        Reset a complete or failed snapshot to pending and generate it again
        with its stored options.

        Raises:
            NotFoundError: If the snapshot does not exist in the tenant
            SnapshotStateError: If it is still pending or generating
        """
        snapshot = self.snapshots.get(ctx.tenant_id, snapshot_id)
        if snapshot is None:
            raise NotFoundError("snapshot", snapshot_id)

        reset = self.snapshots.transition(ctx.tenant_id, snapshot_id, REGENERABLE, {
            "status": SnapshotStatus.PENDING,
            "error_message": None,
            "diff": None,
            "previous_snapshot_id": None,
            "started_at": None,
            "completed_at": None,
            "updated_at": utc_now(),
        })
        if not reset:
            current = self.snapshots.get(ctx.tenant_id, snapshot_id)
            status = current.status.value if current else snapshot.status.value
            raise SnapshotStateError(
                f"Snapshot cannot be regenerated while {status}",
                snapshot_id=snapshot_id,
                status=status,
            )

        pending = self.snapshots.get(ctx.tenant_id, snapshot_id)
        options = dict(snapshot.options) or {"snapshot_type": snapshot.snapshot_type.value}
        options.setdefault("compute_diff", self.compute_diff_by_default)

        self.audit.record(ctx, GraphEventType.SNAPSHOT_REGENERATED, snapshot_id=snapshot_id)
        self._submit(ctx, snapshot_id, options)
        return pending

    def get_snapshot(self, ctx: GraphContext, snapshot_id: str) -> SnapshotRecord | None:
        return self.snapshots.get(ctx.tenant_id, snapshot_id)

    def list_snapshots(
        self,
        ctx: GraphContext,
        status: SnapshotStatus | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Page[SnapshotRecord]:
        if isinstance(status, str):
            try:
                status = SnapshotStatus(status)
            except ValueError as e:
                raise InvalidInputError(f"Unknown snapshot status: {status}", field="status") from e
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        items, total = self.snapshots.list(ctx.tenant_id, status=status, limit=limit, offset=offset)
        return Page(items=items, total=total, limit=limit, offset=offset)

    def wait_for(
        self,
        ctx: GraphContext,
        snapshot_id: str,
        timeout: float | None = None,
    ) -> SnapshotRecord | None:
        """Block until queued generation for ``snapshot_id`` has finished."""
        with self._futures_lock:
            future = self._futures.get(snapshot_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.snapshots.get(ctx.tenant_id, snapshot_id)

    def shutdown(self, wait: bool = True) -> None:
        self.runner.shutdown(wait=wait)

    def _submit(self, ctx: GraphContext, snapshot_id: str, options: dict) -> None:
        future = self.runner.submit(self._generate, ctx, snapshot_id, options)
        with self._futures_lock:
            self._futures[snapshot_id] = future
        future.add_done_callback(lambda done: self._forget(snapshot_id, done))

    def _forget(self, snapshot_id: str, future: Future) -> None:
        with self._futures_lock:
            if self._futures.get(snapshot_id) is future:
                del self._futures[snapshot_id]
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Snapshot {snapshot_id} generation task raised: {future.exception()!r}")

    def _generate(self, ctx: GraphContext, snapshot_id: str, options: dict) -> None:
        log = get_logger_with_context(__name__, snapshot=snapshot_id, tenant=ctx.tenant_id)
        try:
            started = self.snapshots.transition(ctx.tenant_id, snapshot_id, [SnapshotStatus.PENDING], {
                "status": SnapshotStatus.GENERATING,
                "started_at": utc_now(),
                "updated_at": utc_now(),
            })
        except Exception as e:
            self._mark_failed(ctx, snapshot_id, e, log)
            return
        if not started:
            log.warning("Snapshot is no longer pending, skipping generation")
            return

        try:
            fields = self._build(ctx, snapshot_id, options, log)
            self.snapshots.update_fields(ctx.tenant_id, snapshot_id, fields)
        except Exception as e:
            self._mark_failed(ctx, snapshot_id, e, log)
            return

        increment_snapshot_outcome(SnapshotStatus.COMPLETE.value)
        log.info(f"Snapshot complete: {fields['node_count']} node(s), {fields['edge_count']} edge(s)")

        self.audit.record(
            ctx,
            GraphEventType.SNAPSHOT_CREATED,
            snapshot_id=snapshot_id,
            metadata={"node_count": fields["node_count"], "edge_count": fields["edge_count"]},
        )

    def _mark_failed(self, ctx: GraphContext, snapshot_id: str, error: Exception, log: Any) -> None:
        """Record ``error`` on the snapshot. A failed write propagates to the task's Future."""
        log.error(f"Snapshot generation failed: {error}")
        try:
            self.snapshots.update_fields(ctx.tenant_id, snapshot_id, {
                "status": SnapshotStatus.FAILED,
                "error_message": str(error) or type(error).__name__,
                "updated_at": utc_now(),
            })
        except Exception as e:
            log.error(f"Could not mark snapshot failed: {e}")
            raise
        increment_snapshot_outcome(SnapshotStatus.FAILED.value)

    def _build(self, ctx: GraphContext, snapshot_id: str, options: dict, log: Any) -> dict:
        """Read the graph and assemble the fields of a completed snapshot."""
        snapshot_type = SnapshotType(options.get("snapshot_type", SnapshotType.FULL.value))

        nodes = self.nodes.list_active(ctx.tenant_id, options.get("node_types"))
        exported = {node.id for node in nodes}
        edges = [
            edge for edge in self.edges.list_active(ctx.tenant_id)
            if edge.source_node_id in exported and edge.target_node_id in exported
        ]
        node_ids = [node.id for node in nodes]
        edge_ids = [edge.id for edge in edges]

        metrics = self.metrics.get_metrics(ctx)
        clusters = None
        if options.get("include_clusters", True):
            clusters = self.metrics.summarize_clusters(nodes)

        diff, previous_id = None, None
        if options.get("compute_diff") or snapshot_type is SnapshotType.INCREMENTAL:
            previous = self.snapshots.latest_complete(ctx.tenant_id, exclude_id=snapshot_id)
            if previous is not None:
                diff = diff_snapshots(previous, node_ids, edge_ids)
                previous_id = previous.id
                log.debug(f"Diffed against snapshot {previous.id}")

        with_payloads = snapshot_type is not SnapshotType.METRICS_ONLY
        return {
            "status": SnapshotStatus.COMPLETE,
            "completed_at": utc_now(),
            "updated_at": utc_now(),
            "node_count": len(nodes),
            "edge_count": len(edges),
            "cluster_count": len(clusters) if clusters is not None else metrics["cluster_count"],
            "metrics": metrics,
            "nodes": [n.to_dict() for n in nodes]
            if with_payloads and options.get("include_nodes", True) else None,
            "edges": [e.to_dict() for e in edges]
            if with_payloads and options.get("include_edges", True) else None,
            "clusters": clusters,
            "node_ids": node_ids,
            "edge_ids": edge_ids,
            "diff": diff,
            "previous_snapshot_id": previous_id,
            "error_message": None,
        }
