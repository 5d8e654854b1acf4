"""
Node merging.

Collapses duplicate nodes into one survivor: properties are folded in
creation order, tag and category lists are unioned, edges are moved onto
the survivor and the other sources are deleted.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import MergeError, NotFoundError
from intel_graph.graph_store.inputs import MergeRequest, MergeStrategy, parse_input
from intel_graph.storage import (
    Database,
    EdgeRecord,
    EdgeRepository,
    GraphEventType,
    NodeRecord,
    NodeRepository,
    utc_now,
)
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MergeResult:
    merged_node: NodeRecord
    merged_node_ids: list[str]
    edges_preserved: int
    edges_removed: int

    def to_dict(self) -> dict:
        return {
            "merged_node": self.merged_node.to_dict(),
            "merged_node_ids": list(self.merged_node_ids),
            "edges_preserved": self.edges_preserved,
            "edges_removed": self.edges_removed,
        }


def fold_properties(nodes: list[NodeRecord]) -> dict[str, Any]:
    """Left fold of property maps; a later node's key wins."""
    merged: dict[str, Any] = {}
    for node in nodes:
        merged.update(node.properties)
    return merged


def union_ordered(lists: list[list[str]]) -> list[str]:
    return list(dict.fromkeys(item for values in lists for item in values))


class MergeEngine:
    """
    Merges 2 to 10 nodes of one tenant.

    The sequence (survivor write, edge moves, deletes) is not one
    transaction. The counts in the result describe what was written.
    """

    def __init__(self, database: Database, audit: AuditLog) -> None:
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.audit = audit

    def merge_nodes(
        self,
        ctx: GraphContext,
        request: MergeRequest | Mapping[str, Any],
    ) -> MergeResult:
        """
        Merge the source nodes into one.

        Raises:
            NotFoundError: If a source node does not exist in the tenant
            MergeError: If the target is not one of the sources
        """
        request = parse_input(MergeRequest, request)
        ordered_ids = self.nodes.creation_order(ctx.tenant_id, request.source_node_ids)
        missing = [nid for nid in request.source_node_ids if nid not in set(ordered_ids)]
        if missing:
            raise NotFoundError("node", missing[0], {"missing": missing})
        if request.target_node_id and request.target_node_id not in ordered_ids:
            raise MergeError(
                "Target node is not among the source nodes",
                {"target_node_id": request.target_node_id},
            )

        found = self.nodes.get_many(ctx.tenant_id, ordered_ids)
        sources = [found[nid] for nid in ordered_ids]

        survivor = self._write_survivor(ctx, request, sources)
        removed_ids = [node.id for node in sources if node.id != survivor.id]

        edges_preserved = 0
        if request.preserve_edges:
            edges_preserved = self._repoint_edges(ctx, survivor.id, set(removed_ids))

        edges_removed = self.edges.count_touching(ctx.tenant_id, removed_ids)
        for node_id in removed_ids:
            self.nodes.delete(ctx.tenant_id, node_id)

        logger.info(
            f"Merged {len(sources)} node(s) into {survivor.id}: "
            f"{edges_preserved} edge(s) kept, {edges_removed} removed"
        )
        self.audit.record(
            ctx,
            GraphEventType.NODE_MERGED,
            node_id=survivor.id,
            changes={
                "strategy": request.strategy.value,
                "merged_node_ids": removed_ids,
            },
            metadata={"edges_preserved": edges_preserved, "edges_removed": edges_removed},
        )
        return MergeResult(
            merged_node=survivor,
            merged_node_ids=removed_ids,
            edges_preserved=edges_preserved,
            edges_removed=edges_removed,
        )

    def _write_survivor(
        self,
        ctx: GraphContext,
        request: MergeRequest,
        sources: list[NodeRecord],
    ) -> NodeRecord:
        properties = fold_properties(sources)
        tags = union_ordered([node.tags for node in sources])
        categories = union_ordered([node.categories for node in sources])
        now = utc_now()

        if request.strategy is MergeStrategy.CREATE_NEW:
            first = sources[0]
            survivor = NodeRecord(
                id=str(uuid.uuid4()),
                tenant_id=ctx.tenant_id,
                node_type=first.node_type,
                label=request.new_label or first.label,
                description=request.new_description or first.description,
                properties=properties,
                tags=tags,
                categories=categories,
                created_at=now,
                updated_at=now,
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
            )
            self.nodes.insert(survivor)
            return survivor

        if request.target_node_id:
            target = next(node for node in sources if node.id == request.target_node_id)
        elif request.strategy is MergeStrategy.KEEP_NEWEST:
            target = sources[-1]
        else:
            target = sources[0]

        self.nodes.update_fields(ctx.tenant_id, target.id, {
            "label": request.new_label or target.label,
            "description": request.new_description or target.description,
            "properties": properties,
            "tags": tags,
            "categories": categories,
            "updated_at": now,
            "updated_by": ctx.actor_id,
        })
        survivor = self.nodes.get(ctx.tenant_id, target.id)
        if survivor is None:
            raise NotFoundError("node", target.id)
        return survivor

    def _repoint_edges(self, ctx: GraphContext, survivor_id: str, removed_ids: set[str]) -> int:
        """Move edges off removed nodes; edges that would loop on the survivor stay put."""
        touching: dict[str, EdgeRecord] = {}
        for node_id in removed_ids:
            for edge in self.edges.for_node(ctx.tenant_id, node_id, active_only=False):
                touching[edge.id] = edge

        moved = 0
        now = utc_now()
        for edge in touching.values():
            source = survivor_id if edge.source_node_id in removed_ids else edge.source_node_id
            target = survivor_id if edge.target_node_id in removed_ids else edge.target_node_id
            if source == target == survivor_id:
                continue
            self.edges.update_fields(ctx.tenant_id, edge.id, {
                "source_node_id": source,
                "target_node_id": target,
                "updated_at": now,
            })
            moved += 1
        return moved
