"""
Repository classes for data access.

Every method takes the tenant id explicitly; no query ever reads or
writes across tenants.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

import numpy as np

from intel_graph.storage.database import Database
from intel_graph.storage.models import (
    AuditLogRecord,
    EdgeRecord,
    EmbeddingRecord,
    EntityKind,
    GraphEventType,
    NodeRecord,
    SnapshotRecord,
    SnapshotStatus,
    format_datetime,
)
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)

NODE_SORT_COLUMNS = frozenset(
    {"created_at", "updated_at", "label", "degree_centrality", "pagerank_score"}
)
EDGE_SORT_COLUMNS = frozenset({"created_at", "weight"})


def encode_value(value: Any) -> Any:
    """Convert a Python value to what SQLite stores for it."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, np.ndarray):
        return np.asarray(value, dtype=np.float32).tobytes()
    return value


def encode_row(data: dict) -> dict:
    return {key: encode_value(value) for key, value in data.items()}


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" * len(values))


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _order_clause(sort_by: str, sort_order: str, allowed: frozenset[str]) -> str:
    if sort_by not in allowed:
        raise ValueError(f"Unsupported sort column: {sort_by}")
    direction = "ASC" if sort_order.lower() == "asc" else "DESC"
    # NULL centrality sorts last in either direction.
    return f"ORDER BY ({sort_by} IS NULL), {sort_by} {direction}, id {direction}"


def _json_overlap(column: str, values: Sequence[str], params: list[Any]) -> str:
    params.extend(values)
    return (
        f"EXISTS (SELECT 1 FROM json_each({column}) "
        f"WHERE json_each.value IN ({_placeholders(values)}))"
    )


class NodeRepository:
    """
    Repository for node records.

    Example:
        >>> repo = NodeRepository(database)
        >>> repo.insert(node)
        >>> repo.get("tenant-1", node.id)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert(self, node: NodeRecord) -> None:
        self.db.insert("nodes", encode_row(node.to_dict()))

    def get(self, tenant_id: str, node_id: str) -> NodeRecord | None:
        row = self.db.fetch_one(
            "SELECT * FROM nodes WHERE tenant_id = ? AND id = ?",
            (tenant_id, node_id),
        )
        return NodeRecord.from_row(row) if row else None

    def get_many(self, tenant_id: str, node_ids: Iterable[str]) -> dict[str, NodeRecord]:
        """Load nodes by id. Missing ids are simply absent from the result."""
        ids = list(dict.fromkeys(node_ids))
        found: dict[str, NodeRecord] = {}
        # Stay well under SQLite's bound-parameter limit.
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            rows = self.db.fetch_all(
                f"SELECT * FROM nodes WHERE tenant_id = ? AND id IN ({_placeholders(chunk)})",
                (tenant_id, *chunk),
            )
            for row in rows:
                found[row["id"]] = NodeRecord.from_row(row)
        return found

    def exists(self, tenant_id: str, node_id: str) -> bool:
        return self.db.fetch_one(
            "SELECT 1 FROM nodes WHERE tenant_id = ? AND id = ?",
            (tenant_id, node_id),
        ) is not None

    def update_fields(self, tenant_id: str, node_id: str, fields: dict) -> bool:
        affected = self.db.update(
            "nodes", encode_row(fields), "tenant_id = ? AND id = ?", (tenant_id, node_id)
        )
        return affected > 0

    def delete(self, tenant_id: str, node_id: str) -> bool:
        return self.db.delete("nodes", "tenant_id = ? AND id = ?", (tenant_id, node_id)) > 0

    def search(
        self,
        tenant_id: str,
        node_types: Sequence[str] | None = None,
        tags: Sequence[str] | None = None,
        categories: Sequence[str] | None = None,
        search: str | None = None,
        source_system: str | None = None,
        is_active: bool | None = None,
        cluster_id: str | None = None,
        community_id: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[NodeRecord], int]:
        """Filtered, sorted page of nodes plus the unpaginated total."""
        clauses = ["tenant_id = ?"]
        params: list[Any] = [tenant_id]

        if node_types:
            clauses.append(f"node_type IN ({_placeholders(node_types)})")
            params.extend(node_types)
        if tags:
            clauses.append(_json_overlap("nodes.tags", tags, params))
        if categories:
            clauses.append(_json_overlap("nodes.categories", categories, params))
        if search:
            pattern = f"%{escape_like(search)}%"
            clauses.append(
                "(label LIKE ? ESCAPE '\\' OR COALESCE(description, '') LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        if source_system is not None:
            clauses.append("source_system = ?")
            params.append(source_system)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if cluster_id is not None:
            clauses.append("cluster_id = ?")
            params.append(cluster_id)
        if community_id is not None:
            clauses.append("community_id = ?")
            params.append(community_id)

        where = " AND ".join(clauses)
        total = self.db.fetch_value(f"SELECT COUNT(*) FROM nodes WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"SELECT * FROM nodes WHERE {where} "
            f"{_order_clause(sort_by, sort_order, NODE_SORT_COLUMNS)} LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [NodeRecord.from_row(row) for row in rows], total

    def select_where(
        self,
        tenant_id: str,
        where: str,
        params: Sequence[Any],
        limit: int,
    ) -> list[NodeRecord]:
        """Active nodes matching an already-validated WHERE fragment."""
        sql = (
            "SELECT * FROM nodes WHERE tenant_id = ? AND is_active = 1"
            + (f" AND {where}" if where else "")
            + " ORDER BY created_at DESC, id DESC LIMIT ?"
        )
        rows = self.db.fetch_all(sql, (tenant_id, *params, limit))
        return [NodeRecord.from_row(row) for row in rows]

    def list_active(
        self,
        tenant_id: str,
        node_types: Sequence[str] | None = None,
    ) -> list[NodeRecord]:
        sql = "SELECT * FROM nodes WHERE tenant_id = ? AND is_active = 1"
        params: list[Any] = [tenant_id]
        if node_types:
            sql += f" AND node_type IN ({_placeholders(node_types)})"
            params.extend(node_types)
        sql += " ORDER BY created_at, rowid"
        return [NodeRecord.from_row(row) for row in self.db.fetch_all(sql, params)]

    def active_ids(self, tenant_id: str, node_ids: Iterable[str]) -> set[str]:
        ids = list(node_ids)
        if not ids:
            return set()
        return {
            node.id for node in self.get_many(tenant_id, ids).values() if node.is_active
        }

    def creation_order(self, tenant_id: str, node_ids: Sequence[str]) -> list[str]:
        """Order ids by creation time, oldest first, insertion order breaking ties."""
        rows = self.db.fetch_all(
            f"SELECT id FROM nodes WHERE tenant_id = ? AND id IN ({_placeholders(node_ids)}) "
            "ORDER BY created_at, rowid",
            (tenant_id, *node_ids),
        )
        return [row["id"] for row in rows]

    def set_metrics(self, tenant_id: str, updates: list[tuple[float, float, str, str]]) -> None:
        """Bulk write (degree, pagerank, updated_at, node_id) tuples."""
        self.db.executemany(
            "UPDATE nodes SET degree_centrality = ?, pagerank_score = ?, updated_at = ? "
            "WHERE id = ? AND tenant_id = ?",
            [(*row, tenant_id) for row in updates],
        )

    def set_clusters(self, tenant_id: str, assignments: list[tuple[str, str, str]]) -> None:
        """Bulk write (cluster_id, updated_at, node_id) tuples."""
        self.db.executemany(
            "UPDATE nodes SET cluster_id = ?, updated_at = ? WHERE id = ? AND tenant_id = ?",
            [(*row, tenant_id) for row in assignments],
        )

    def count(self, tenant_id: str, active_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM nodes WHERE tenant_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        return self.db.fetch_value(sql, (tenant_id,), 0)

    def count_by_type(self, tenant_id: str) -> dict[str, int]:
        rows = self.db.fetch_all(
            "SELECT node_type, COUNT(*) AS count FROM nodes WHERE tenant_id = ? "
            "GROUP BY node_type ORDER BY node_type",
            (tenant_id,),
        )
        return {row["node_type"]: row["count"] for row in rows}

    def count_clusters(self, tenant_id: str) -> int:
        return self.db.fetch_value(
            "SELECT COUNT(DISTINCT cluster_id) FROM nodes "
            "WHERE tenant_id = ? AND is_active = 1 AND cluster_id IS NOT NULL",
            (tenant_id,),
            0,
        )

    def top_by(self, tenant_id: str, column: str, limit: int = 10) -> list[NodeRecord]:
        """Highest stored values of a centrality column, active nodes only."""
        if column not in ("degree_centrality", "pagerank_score"):
            raise ValueError(f"Unsupported ranking column: {column}")
        rows = self.db.fetch_all(
            f"SELECT * FROM nodes WHERE tenant_id = ? AND is_active = 1 "
            f"AND {column} IS NOT NULL ORDER BY {column} DESC, id LIMIT ?",
            (tenant_id, limit),
        )
        return [NodeRecord.from_row(row) for row in rows]

    def recent(self, tenant_id: str, limit: int = 5) -> list[NodeRecord]:
        rows = self.db.fetch_all(
            "SELECT * FROM nodes WHERE tenant_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (tenant_id, limit),
        )
        return [NodeRecord.from_row(row) for row in rows]

    def group_counts(
        self,
        tenant_id: str,
        column: str,
        node_ids: Sequence[str],
    ) -> dict[str, int]:
        """Count the given nodes by one column; NULL groups are reported as 'none'."""
        if column not in ("node_type", "cluster_id", "community_id"):
            raise ValueError(f"Unsupported group column: {column}")
        counts: dict[str, int] = {}
        for node in self.get_many(tenant_id, node_ids).values():
            raw = getattr(node, column)
            key = raw.value if isinstance(raw, Enum) else (raw or "none")
            counts[key] = counts.get(key, 0) + 1
        return dict(sorted(counts.items()))


class EdgeRepository:
    """Repository for edge records."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert(self, edge: EdgeRecord) -> None:
        self.db.insert("edges", encode_row(edge.to_dict()))

    def get(self, tenant_id: str, edge_id: str) -> EdgeRecord | None:
        row = self.db.fetch_one(
            "SELECT * FROM edges WHERE tenant_id = ? AND id = ?",
            (tenant_id, edge_id),
        )
        return EdgeRecord.from_row(row) if row else None

    def update_fields(self, tenant_id: str, edge_id: str, fields: dict) -> bool:
        affected = self.db.update(
            "edges", encode_row(fields), "tenant_id = ? AND id = ?", (tenant_id, edge_id)
        )
        return affected > 0

    def delete(self, tenant_id: str, edge_id: str) -> bool:
        return self.db.delete("edges", "tenant_id = ? AND id = ?", (tenant_id, edge_id)) > 0

    def search(
        self,
        tenant_id: str,
        edge_types: Sequence[str] | None = None,
        source_node_id: str | None = None,
        target_node_id: str | None = None,
        node_id: str | None = None,
        min_weight: float | None = None,
        max_weight: float | None = None,
        is_active: bool | None = None,
        is_bidirectional: bool | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[EdgeRecord], int]:
        clauses = ["tenant_id = ?"]
        params: list[Any] = [tenant_id]

        if edge_types:
            clauses.append(f"edge_type IN ({_placeholders(edge_types)})")
            params.extend(edge_types)
        if source_node_id is not None:
            clauses.append("source_node_id = ?")
            params.append(source_node_id)
        if target_node_id is not None:
            clauses.append("target_node_id = ?")
            params.append(target_node_id)
        if node_id is not None:
            clauses.append("(source_node_id = ? OR target_node_id = ?)")
            params.extend([node_id, node_id])
        if min_weight is not None:
            clauses.append("weight >= ?")
            params.append(min_weight)
        if max_weight is not None:
            clauses.append("weight <= ?")
            params.append(max_weight)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if is_bidirectional is not None:
            clauses.append("is_bidirectional = ?")
            params.append(int(is_bidirectional))

        where = " AND ".join(clauses)
        total = self.db.fetch_value(f"SELECT COUNT(*) FROM edges WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"SELECT * FROM edges WHERE {where} "
            f"{_order_clause(sort_by, sort_order, EDGE_SORT_COLUMNS)} LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [EdgeRecord.from_row(row) for row in rows], total

    def list_active(
        self,
        tenant_id: str,
        edge_types: Sequence[str] | None = None,
    ) -> list[EdgeRecord]:
        sql = "SELECT * FROM edges WHERE tenant_id = ? AND is_active = 1"
        params: list[Any] = [tenant_id]
        if edge_types:
            sql += f" AND edge_type IN ({_placeholders(edge_types)})"
            params.extend(edge_types)
        sql += " ORDER BY created_at, rowid"
        return [EdgeRecord.from_row(row) for row in self.db.fetch_all(sql, params)]

    def for_node(
        self,
        tenant_id: str,
        node_id: str,
        active_only: bool = True,
        edge_types: Sequence[str] | None = None,
    ) -> list[EdgeRecord]:
        """Edges with ``node_id`` at either end, oldest first."""
        sql = (
            "SELECT * FROM edges WHERE tenant_id = ? "
            "AND (source_node_id = ? OR target_node_id = ?)"
        )
        params: list[Any] = [tenant_id, node_id, node_id]
        if active_only:
            sql += " AND is_active = 1"
        if edge_types:
            sql += f" AND edge_type IN ({_placeholders(edge_types)})"
            params.extend(edge_types)
        sql += " ORDER BY created_at, rowid"
        return [EdgeRecord.from_row(row) for row in self.db.fetch_all(sql, params)]

    def among(self, tenant_id: str, node_ids: Sequence[str]) -> list[EdgeRecord]:
        """Active edges whose both endpoints are in ``node_ids``."""
        if not node_ids:
            return []
        payload = json.dumps(list(node_ids))
        rows = self.db.fetch_all(
            "SELECT * FROM edges WHERE tenant_id = ? AND is_active = 1 "
            "AND source_node_id IN (SELECT value FROM json_each(?)) "
            "AND target_node_id IN (SELECT value FROM json_each(?)) "
            "ORDER BY created_at, rowid",
            (tenant_id, payload, payload),
        )
        return [EdgeRecord.from_row(row) for row in rows]

    def count_touching(self, tenant_id: str, node_ids: Sequence[str]) -> int:
        """Edges (active or not) with at least one endpoint in ``node_ids``."""
        if not node_ids:
            return 0
        payload = json.dumps(list(node_ids))
        return self.db.fetch_value(
            "SELECT COUNT(*) FROM edges WHERE tenant_id = ? "
            "AND (source_node_id IN (SELECT value FROM json_each(?)) "
            "OR target_node_id IN (SELECT value FROM json_each(?)))",
            (tenant_id, payload, payload),
            0,
        )

    def count(self, tenant_id: str, active_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM edges WHERE tenant_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        return self.db.fetch_value(sql, (tenant_id,), 0)

    def count_by_type(self, tenant_id: str) -> dict[str, int]:
        rows = self.db.fetch_all(
            "SELECT edge_type, COUNT(*) AS count FROM edges WHERE tenant_id = ? "
            "GROUP BY edge_type ORDER BY edge_type",
            (tenant_id,),
        )
        return {row["edge_type"]: row["count"] for row in rows}


class EmbeddingRepository:
    """
    Repository for node and edge embeddings.

    Node vectors live in ``node_embeddings`` and edge vectors in
    ``edge_embeddings``; both cascade with their owner.
    """

    _TABLES = {
        EntityKind.NODE: ("node_embeddings", "node_id"),
        EntityKind.EDGE: ("edge_embeddings", "edge_id"),
    }

    def __init__(self, db: Database) -> None:
        self.db = db

    def get_current(
        self,
        tenant_id: str,
        kind: EntityKind,
        entity_id: str,
    ) -> EmbeddingRecord | None:
        table, owner = self._TABLES[kind]
        row = self.db.fetch_one(
            f"SELECT * FROM {table} WHERE tenant_id = ? AND {owner} = ? AND is_current = 1 "
            "ORDER BY generated_at DESC LIMIT 1",
            (tenant_id, entity_id),
        )
        return EmbeddingRecord.from_row(row, kind) if row else None

    def history(self, tenant_id: str, kind: EntityKind, entity_id: str) -> list[EmbeddingRecord]:
        """All records for one owner, newest first."""
        table, owner = self._TABLES[kind]
        rows = self.db.fetch_all(
            f"SELECT * FROM {table} WHERE tenant_id = ? AND {owner} = ? "
            "ORDER BY generated_at DESC, rowid DESC",
            (tenant_id, entity_id),
        )
        return [EmbeddingRecord.from_row(row, kind) for row in rows]

    def replace_current(self, record: EmbeddingRecord) -> None:
        """Demote existing current records for the owner and insert ``record`` as current."""
        table, owner = self._TABLES[record.entity_kind]
        with self.db.transaction():
            self.db.update(
                table,
                {"is_current": 0},
                f"tenant_id = ? AND {owner} = ? AND is_current = 1",
                (record.tenant_id, record.entity_id),
            )
            self.db.insert(table, encode_row({
                "id": record.id,
                "tenant_id": record.tenant_id,
                owner: record.entity_id,
                "provider": record.provider,
                "model_version": record.model_version,
                "vector": np.asarray(record.vector, dtype=np.float32),
                "dimensions": record.dimensions,
                "context_text": record.context_text,
                "context_hash": record.context_hash,
                "is_current": True,
                "generated_at": record.generated_at,
            }))

    def current_node_vectors(
        self,
        tenant_id: str,
        node_types: Sequence[str] | None = None,
    ) -> list[EmbeddingRecord]:
        """Current vectors of the tenant's active nodes, optionally by node type."""
        sql = (
            "SELECT e.* FROM node_embeddings e JOIN nodes n ON n.id = e.node_id "
            "WHERE e.tenant_id = ? AND e.is_current = 1 AND n.is_active = 1"
        )
        params: list[Any] = [tenant_id]
        if node_types:
            sql += f" AND n.node_type IN ({_placeholders(node_types)})"
            params.extend(node_types)
        rows = self.db.fetch_all(sql, params)
        return [EmbeddingRecord.from_row(row, EntityKind.NODE) for row in rows]


class SnapshotRepository:
    """Repository for snapshot records."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert(self, snapshot: SnapshotRecord) -> None:
        data = snapshot.to_dict()
        data.update(node_ids=snapshot.node_ids, edge_ids=snapshot.edge_ids)
        self.db.insert("snapshots", encode_row({k: v for k, v in data.items() if v is not None}))

    def get(self, tenant_id: str, snapshot_id: str) -> SnapshotRecord | None:
        row = self.db.fetch_one(
            "SELECT * FROM snapshots WHERE tenant_id = ? AND id = ?",
            (tenant_id, snapshot_id),
        )
        return SnapshotRecord.from_row(row) if row else None

    def update_fields(self, tenant_id: str, snapshot_id: str, fields: dict) -> bool:
        # None must reach the database as NULL, not as the JSON text "null".
        encoded = {k: (None if v is None else encode_value(v)) for k, v in fields.items()}
        affected = self.db.update(
            "snapshots", encoded, "tenant_id = ? AND id = ?", (tenant_id, snapshot_id)
        )
        return affected > 0

    def transition(
        self,
        tenant_id: str,
        snapshot_id: str,
        from_statuses: Sequence[SnapshotStatus],
        fields: dict,
    ) -> bool:
        """Update only while the snapshot is in one of ``from_statuses``."""
        encoded = {k: (None if v is None else encode_value(v)) for k, v in fields.items()}
        statuses = [status.value for status in from_statuses]
        affected = self.db.update(
            "snapshots",
            encoded,
            f"tenant_id = ? AND id = ? AND status IN ({_placeholders(statuses)})",
            (tenant_id, snapshot_id, *statuses),
        )
        return affected > 0

    def list(
        self,
        tenant_id: str,
        status: SnapshotStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[SnapshotRecord], int]:
        where = "tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            where += " AND status = ?"
            params.append(status.value)
        total = self.db.fetch_value(f"SELECT COUNT(*) FROM snapshots WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"SELECT * FROM snapshots WHERE {where} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [SnapshotRecord.from_row(row) for row in rows], total

    def latest_complete(self, tenant_id: str, exclude_id: str | None = None) -> SnapshotRecord | None:
        """Most recently completed snapshot, skipping ``exclude_id``."""
        row = self.db.fetch_one(
            "SELECT * FROM snapshots WHERE tenant_id = ? AND status = ? AND id != ? "
            "ORDER BY completed_at DESC, rowid DESC LIMIT 1",
            (tenant_id, SnapshotStatus.COMPLETE.value, exclude_id or ""),
        )
        return SnapshotRecord.from_row(row) if row else None

    def count(self, tenant_id: str) -> int:
        return self.db.fetch_value(
            "SELECT COUNT(*) FROM snapshots WHERE tenant_id = ?", (tenant_id,), 0
        )


class AuditLogRepository:
    """Append-only storage for audit entries."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def insert(self, entry: AuditLogRecord) -> None:
        data = {k: v for k, v in entry.to_dict().items() if v is not None}
        self.db.insert("audit_log", encode_row(data))

    def list(
        self,
        tenant_id: str,
        event_type: GraphEventType | None = None,
        node_id: str | None = None,
        edge_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        where = "tenant_id = ?"
        params: list[Any] = [tenant_id]
        if event_type is not None:
            where += " AND event_type = ?"
            params.append(event_type.value)
        if node_id is not None:
            where += " AND node_id = ?"
            params.append(node_id)
        if edge_id is not None:
            where += " AND edge_id = ?"
            params.append(edge_id)

        total = self.db.fetch_value(f"SELECT COUNT(*) FROM audit_log WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"SELECT * FROM audit_log WHERE {where} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [AuditLogRecord.from_row(row) for row in rows], total
