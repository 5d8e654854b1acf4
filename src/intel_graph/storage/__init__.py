"""
Storage module for the Intelligence Graph service.

SQLite persistence for nodes, edges, embeddings, snapshots and the
audit log.
"""

from intel_graph.storage.database import Database
from intel_graph.storage.schema import SchemaManager, SCHEMA_VERSION
from intel_graph.storage.models import (
    NodeType,
    EdgeType,
    EntityKind,
    TraversalDirection,
    SnapshotType,
    SnapshotStatus,
    GraphEventType,
    NodeRecord,
    EdgeRecord,
    EmbeddingRecord,
    SnapshotRecord,
    AuditLogRecord,
    utc_now,
)
from intel_graph.storage.repositories import (
    NodeRepository,
    EdgeRepository,
    EmbeddingRepository,
    SnapshotRepository,
    AuditLogRepository,
)

__all__ = [
    # Database
    "Database",
    "SchemaManager",
    "SCHEMA_VERSION",
    # Enums
    "NodeType",
    "EdgeType",
    "EntityKind",
    "TraversalDirection",
    "SnapshotType",
    "SnapshotStatus",
    "GraphEventType",
    # Records
    "NodeRecord",
    "EdgeRecord",
    "EmbeddingRecord",
    "SnapshotRecord",
    "AuditLogRecord",
    "utc_now",
    # Repositories
    "NodeRepository",
    "EdgeRepository",
    "EmbeddingRepository",
    "SnapshotRepository",
    "AuditLogRepository",
]
