"""
Entity store for graph nodes and edges.

Owns create/read/update/delete for both record kinds, enforces the
edge-endpoint rule and reports every mutation to the audit log once the
write has committed.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, TypeVar

from intel_graph.audit import AuditLog
from intel_graph.config import Settings
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import InvalidEdgeError, NotFoundError
from intel_graph.graph_store.inputs import (
    EdgeCreate,
    EdgeListQuery,
    EdgeUpdate,
    NodeCreate,
    NodeListQuery,
    NodeUpdate,
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
    utc_now,
)
from intel_graph.storage.models import format_datetime
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of a listing plus the unpaginated total."""

    items: list[T]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
        }


@dataclass
class NodeConnections:
    """A node with its active edges split by direction and the nodes they reach."""

    node: NodeRecord
    incoming_edges: list[EdgeRecord] = field(default_factory=list)
    outgoing_edges: list[EdgeRecord] = field(default_factory=list)
    connected_nodes: list[NodeRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "node": self.node.to_dict(),
            "incoming_edges": [e.to_dict() for e in self.incoming_edges],
            "outgoing_edges": [e.to_dict() for e in self.outgoing_edges],
            "connected_nodes": [n.to_dict() for n in self.connected_nodes],
        }


@dataclass
class EdgeWithNodes:
    edge: EdgeRecord
    source_node: NodeRecord
    target_node: NodeRecord

    def to_dict(self) -> dict:
        return {
            "edge": self.edge.to_dict(),
            "source_node": self.source_node.to_dict(),
            "target_node": self.target_node.to_dict(),
        }


def _change_set(before: Any, fields: dict) -> dict:
    """Old/new pairs for the fields an update actually touched."""
    changes = {}
    for name, new in fields.items():
        if name in ("updated_at", "updated_by"):
            continue
        old = getattr(before, name, None)
        changes[name] = {"old": _jsonable(old), "new": _jsonable(new)}
    return changes


def _jsonable(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if hasattr(value, "isoformat"):
        return format_datetime(value)
    return value


class GraphStore:
    """
    Tenant-scoped CRUD for nodes and edges.

    Reads of an absent (or other-tenant) entity return None; writes that
    reference one raise NotFoundError.

    Example:
        >>> store = GraphStore(database, audit)
        >>> acme = store.create_node(ctx, {"node_type": "organization", "label": "Acme"})
        >>> store.update_node(ctx, acme.id, {"description": None})
        >>> page = store.list_nodes(ctx, {"search": "acme"})
    """

    def __init__(self, database: Database, audit: AuditLog) -> None:
        self.db = database
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.audit = audit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database | None = None,
        audit: AuditLog | None = None,
    ) -> "GraphStore":
        if database is None:
            database = Database.from_settings(settings)
        if audit is None:
            audit = AuditLog(AuditLogRepository(database))
        return cls(database=database, audit=audit)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def create_node(self, ctx: GraphContext, data: NodeCreate | Mapping[str, Any]) -> NodeRecord:
        request = parse_input(NodeCreate, data)
        now = utc_now()
        node = NodeRecord(
            id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_id,
            created_at=now,
            updated_at=now,
            created_by=ctx.actor_id,
            updated_by=ctx.actor_id,
            **request.model_dump(),
        )
        self.nodes.insert(node)
        logger.debug(f"Created node {node.id} ({node.node_type.value}) for tenant {ctx.tenant_id}")

        self.audit.record(
            ctx,
            GraphEventType.NODE_CREATED,
            node_id=node.id,
            changes={"node_type": node.node_type.value, "label": node.label},
        )
        return node

    def get_node(self, ctx: GraphContext, node_id: str) -> NodeRecord | None:
        return self.nodes.get(ctx.tenant_id, node_id)

    def require_node(self, ctx: GraphContext, node_id: str) -> NodeRecord:
        node = self.nodes.get(ctx.tenant_id, node_id)
        if node is None:
            raise NotFoundError("node", node_id)
        return node

    def update_node(
        self,
        ctx: GraphContext,
        node_id: str,
        data: NodeUpdate | Mapping[str, Any],
    ) -> NodeRecord:
        """
        Apply only the fields present in ``data``.

        Raises:
            NotFoundError: If the node does not exist in the tenant
            InvalidInputError: If a field fails validation
        """
        request = parse_input(NodeUpdate, data)
        before = self.require_node(ctx, node_id)

        fields = request.model_dump(include=request.model_fields_set)
        fields["updated_at"] = utc_now()
        fields["updated_by"] = ctx.actor_id
        if not self.nodes.update_fields(ctx.tenant_id, node_id, fields):
            raise NotFoundError("node", node_id)

        after = self.require_node(ctx, node_id)
        self.audit.record(
            ctx,
            GraphEventType.NODE_UPDATED,
            node_id=node_id,
            changes=_change_set(before, fields),
        )
        return after

    def delete_node(self, ctx: GraphContext, node_id: str) -> None:
        """Hard delete; the node's edges and embeddings go with it."""
        node = self.require_node(ctx, node_id)
        edge_count = self.edges.count_touching(ctx.tenant_id, [node_id])
        if not self.nodes.delete(ctx.tenant_id, node_id):
            raise NotFoundError("node", node_id)

        logger.debug(f"Deleted node {node_id} and {edge_count} edge(s)")
        self.audit.record(
            ctx,
            GraphEventType.NODE_DELETED,
            node_id=node_id,
            changes={"label": node.label, "node_type": node.node_type.value},
            metadata={"edges_removed": edge_count},
        )

    def list_nodes(
        self,
        ctx: GraphContext,
        query: NodeListQuery | Mapping[str, Any] | None = None,
    ) -> Page[NodeRecord]:
        """Filtered listing; inactive nodes are hidden unless ``is_active`` says otherwise."""
        request = parse_input(NodeListQuery, query)
        items, total = self.nodes.search(
            ctx.tenant_id,
            node_types=enum_values(request.node_types),
            tags=request.tags,
            categories=request.categories,
            search=request.search,
            source_system=request.source_system,
            is_active=request.is_active,
            cluster_id=request.cluster_id,
            community_id=request.community_id,
            sort_by=request.sort_by,
            sort_order=request.sort_order,
            limit=request.limit,
            offset=request.offset,
        )
        return Page(items=items, total=total, limit=request.limit, offset=request.offset)

    def get_node_with_connections(self, ctx: GraphContext, node_id: str) -> NodeConnections | None:
        node = self.nodes.get(ctx.tenant_id, node_id)
        if node is None:
            return None

        connections = NodeConnections(node=node)
        neighbor_ids: list[str] = []
        for edge in self.edges.for_node(ctx.tenant_id, node_id, active_only=True):
            if edge.source_node_id == node_id:
                connections.outgoing_edges.append(edge)
            if edge.target_node_id == node_id:
                connections.incoming_edges.append(edge)
            other = edge.other_end(node_id)
            if other != node_id:
                neighbor_ids.append(other)

        found = self.nodes.get_many(ctx.tenant_id, neighbor_ids)
        connections.connected_nodes = [
            found[nid] for nid in dict.fromkeys(neighbor_ids) if nid in found
        ]
        return connections

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    def create_edge(self, ctx: GraphContext, data: EdgeCreate | Mapping[str, Any]) -> EdgeRecord:
        """
        Create an edge between two existing nodes of the tenant.

        The endpoint check is a read followed by the insert; a concurrent
        delete of an endpoint in between is not prevented.

        Raises:
            InvalidEdgeError: If either endpoint is missing from the tenant
        """
        request = parse_input(EdgeCreate, data)
        for endpoint in (request.source_node_id, request.target_node_id):
            if not self.nodes.exists(ctx.tenant_id, endpoint):
                raise InvalidEdgeError(
                    "Edge endpoint does not exist in this tenant",
                    node_id=endpoint,
                )

        now = utc_now()
        edge = EdgeRecord(
            id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_id,
            created_at=now,
            updated_at=now,
            created_by=ctx.actor_id,
            **request.model_dump(),
        )
        self.edges.insert(edge)

        self.audit.record(
            ctx,
            GraphEventType.EDGE_CREATED,
            edge_id=edge.id,
            changes={
                "edge_type": edge.edge_type.value,
                "source_node_id": edge.source_node_id,
                "target_node_id": edge.target_node_id,
            },
        )
        return edge

    def get_edge(self, ctx: GraphContext, edge_id: str) -> EdgeRecord | None:
        return self.edges.get(ctx.tenant_id, edge_id)

    def update_edge(
        self,
        ctx: GraphContext,
        edge_id: str,
        data: EdgeUpdate | Mapping[str, Any],
    ) -> EdgeRecord:
        request = parse_input(EdgeUpdate, data)
        before = self.edges.get(ctx.tenant_id, edge_id)
        if before is None:
            raise NotFoundError("edge", edge_id)

        fields = request.model_dump(include=request.model_fields_set)
        fields["updated_at"] = utc_now()
        if not self.edges.update_fields(ctx.tenant_id, edge_id, fields):
            raise NotFoundError("edge", edge_id)

        after = self.edges.get(ctx.tenant_id, edge_id)
        if after is None:
            raise NotFoundError("edge", edge_id)
        self.audit.record(
            ctx,
            GraphEventType.EDGE_UPDATED,
            edge_id=edge_id,
            changes=_change_set(before, fields),
        )
        return after

    def delete_edge(self, ctx: GraphContext, edge_id: str) -> None:
        edge = self.edges.get(ctx.tenant_id, edge_id)
        if edge is None or not self.edges.delete(ctx.tenant_id, edge_id):
            raise NotFoundError("edge", edge_id)

        self.audit.record(
            ctx,
            GraphEventType.EDGE_DELETED,
            edge_id=edge_id,
            changes={
                "edge_type": edge.edge_type.value,
                "source_node_id": edge.source_node_id,
                "target_node_id": edge.target_node_id,
            },
        )

    def list_edges(
        self,
        ctx: GraphContext,
        query: EdgeListQuery | Mapping[str, Any] | None = None,
    ) -> Page[EdgeRecord]:
        request = parse_input(EdgeListQuery, query)
        items, total = self.edges.search(
            ctx.tenant_id,
            edge_types=enum_values(request.edge_types),
            source_node_id=request.source_node_id,
            target_node_id=request.target_node_id,
            node_id=request.node_id,
            min_weight=request.min_weight,
            max_weight=request.max_weight,
            is_active=request.is_active,
            is_bidirectional=request.is_bidirectional,
            sort_by=request.sort_by,
            sort_order=request.sort_order,
            limit=request.limit,
            offset=request.offset,
        )
        return Page(items=items, total=total, limit=request.limit, offset=request.offset)

    def get_edge_with_nodes(self, ctx: GraphContext, edge_id: str) -> EdgeWithNodes | None:
        edge = self.edges.get(ctx.tenant_id, edge_id)
        if edge is None:
            return None
        found = self.nodes.get_many(ctx.tenant_id, [edge.source_node_id, edge.target_node_id])
        source = found.get(edge.source_node_id)
        target = found.get(edge.target_node_id)
        if source is None or target is None:
            return None
        return EdgeWithNodes(edge=edge, source_node=source, target_node=target)

    def __repr__(self) -> str:
        return f"GraphStore(db={self.db!r})"
