"""
Tests for the storage layer.

Tests database setup, transactions and the repositories.
"""

import threading
import uuid
from pathlib import Path

import numpy as np
import pytest

from intel_graph.config import Settings
from intel_graph.core.exceptions import DatabaseError
from intel_graph.storage import (
    SCHEMA_VERSION,
    Database,
    EdgeRecord,
    EdgeRepository,
    EdgeType,
    EmbeddingRecord,
    EmbeddingRepository,
    EntityKind,
    NodeRecord,
    NodeRepository,
    NodeType,
    SchemaManager,
    SnapshotRecord,
    SnapshotRepository,
    SnapshotStatus,
    utc_now,
)


def make_node(tenant_id: str = "tenant-a", label: str = "Acme", **kwargs) -> NodeRecord:
    now = utc_now()
    return NodeRecord(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        node_type=kwargs.pop("node_type", NodeType.ORGANIZATION),
        label=label,
        created_at=now,
        updated_at=now,
        **kwargs,
    )


def make_edge(source: NodeRecord, target: NodeRecord, **kwargs) -> EdgeRecord:
    now = utc_now()
    return EdgeRecord(
        id=str(uuid.uuid4()),
        tenant_id=source.tenant_id,
        source_node_id=source.id,
        target_node_id=target.id,
        edge_type=kwargs.pop("edge_type", EdgeType.RELATED_TO),
        created_at=now,
        updated_at=now,
        **kwargs,
    )


class TestDatabase:
    """Tests for Database class."""

    def test_database_creation(self, test_settings: Settings, temp_dir: Path):
        """Database should create its file and parent directory."""
        settings = test_settings.model_copy(update={
            "storage": test_settings.storage.model_copy(
                update={"database_path": temp_dir / "nested" / "graph.db"}
            ),
        })
        db = Database.from_settings(settings)

        assert (temp_dir / "nested" / "graph.db").exists()
        db.close()

    def test_memory_database_rejected(self):
        """In-memory databases cannot be shared across threads."""
        with pytest.raises(DatabaseError):
            Database(":memory:")

    def test_database_wal_mode(self, database: Database):
        """Database should use WAL mode."""
        mode = database.fetch_value("PRAGMA journal_mode")

        assert mode.lower() == "wal"

    def test_database_tables_created(self, database: Database):
        """All tables should be created."""
        rows = database.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row["name"] for row in rows}

        for table in ("nodes", "edges", "node_embeddings", "edge_embeddings",
                      "snapshots", "audit_log", "schema_version"):
            assert table in tables

    def test_schema_version(self, database: Database):
        """Schema version should be recorded."""
        manager = SchemaManager(database._get_connection())

        assert manager.get_version() == SCHEMA_VERSION
        assert not manager.needs_migration()

    def test_transaction_commit(self, database: Database):
        """Committed writes should be visible."""
        node = make_node()
        repo = NodeRepository(database)

        with database.transaction():
            repo.insert(node)

        assert repo.get("tenant-a", node.id) is not None

    def test_transaction_rollback(self, database: Database):
        """Writes in a failed transaction should be rolled back."""
        node = make_node()
        repo = NodeRepository(database)

        with pytest.raises(RuntimeError):
            with database.transaction():
                repo.insert(node)
                raise RuntimeError("boom")

        assert repo.get("tenant-a", node.id) is None

    def test_nested_transaction_joins_outer(self, database: Database):
        """An inner transaction should roll back with the outer one."""
        first, second = make_node(label="First"), make_node(label="Second")
        repo = NodeRepository(database)

        with pytest.raises(RuntimeError):
            with database.transaction():
                repo.insert(first)
                with database.transaction():
                    repo.insert(second)
                raise RuntimeError("boom")

        assert repo.count("tenant-a") == 0

    def test_connection_per_thread(self, database: Database):
        """Each thread should get its own connection."""
        seen = []

        def worker():
            seen.append(database._get_connection())

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen[0] is not database._get_connection()


class TestNodeRepository:
    """Tests for NodeRepository."""

    def test_round_trip_fields(self, database: Database):
        """JSON columns and enums should survive storage."""
        repo = NodeRepository(database)
        node = make_node(
            tags=["customer"],
            categories=["tier-1"],
            properties={"region": "EU", "scores": [1, 2]},
            confidence_score=0.75,
        )
        repo.insert(node)

        loaded = repo.get("tenant-a", node.id)

        assert loaded.node_type is NodeType.ORGANIZATION
        assert loaded.tags == ["customer"]
        assert loaded.categories == ["tier-1"]
        assert loaded.properties == {"region": "EU", "scores": [1, 2]}
        assert loaded.confidence_score == 0.75
        assert loaded.created_at.tzinfo is not None

    def test_get_is_tenant_scoped(self, database: Database):
        """A node should be invisible to other tenants."""
        repo = NodeRepository(database)
        node = make_node()
        repo.insert(node)

        assert repo.get("tenant-b", node.id) is None
        assert not repo.exists("tenant-b", node.id)

    def test_search_by_label(self, database: Database):
        """Search should match label substrings case-insensitively."""
        repo = NodeRepository(database)
        repo.insert(make_node(label="Acme Corp"))
        repo.insert(make_node(label="Globex"))

        items, total = repo.search("tenant-a", search="acme")

        assert total == 1
        assert items[0].label == "Acme Corp"

    def test_search_escapes_wildcards(self, database: Database):
        """LIKE wildcards in the search text should be literal."""
        repo = NodeRepository(database)
        repo.insert(make_node(label="100% Growth"))
        repo.insert(make_node(label="100 Growth"))

        items, total = repo.search("tenant-a", search="100%")

        assert total == 1
        assert items[0].label == "100% Growth"

    def test_count_by_type(self, database: Database):
        """Counts should be grouped by node type."""
        repo = NodeRepository(database)
        repo.insert(make_node())
        repo.insert(make_node(node_type=NodeType.COMPETITOR))
        repo.insert(make_node(node_type=NodeType.COMPETITOR))

        assert repo.count_by_type("tenant-a") == {"competitor": 2, "organization": 1}

    def test_delete_cascades_edges(self, database: Database):
        """Deleting a node should remove its edges."""
        nodes, edges = NodeRepository(database), EdgeRepository(database)
        a, b = make_node(label="A"), make_node(label="B")
        nodes.insert(a)
        nodes.insert(b)
        edges.insert(make_edge(a, b))

        nodes.delete("tenant-a", a.id)

        assert edges.count("tenant-a") == 0


class TestEdgeRepository:
    """Tests for EdgeRepository."""

    def test_for_node_skips_inactive_by_default(self, database: Database):
        """Inactive edges should be hidden unless asked for."""
        nodes, edges = NodeRepository(database), EdgeRepository(database)
        a, b = make_node(label="A"), make_node(label="B")
        nodes.insert(a)
        nodes.insert(b)
        edges.insert(make_edge(a, b))
        edges.insert(make_edge(b, a, is_active=False))

        assert len(edges.for_node("tenant-a", a.id)) == 1
        assert len(edges.for_node("tenant-a", a.id, active_only=False)) == 2

    def test_among(self, database: Database):
        """Only edges with both ends in the set should be returned."""
        nodes, edges = NodeRepository(database), EdgeRepository(database)
        a, b, c = make_node(label="A"), make_node(label="B"), make_node(label="C")
        for node in (a, b, c):
            nodes.insert(node)
        inside = make_edge(a, b)
        edges.insert(inside)
        edges.insert(make_edge(b, c))

        assert [e.id for e in edges.among("tenant-a", [a.id, b.id])] == [inside.id]


class TestEmbeddingRepository:
    """Tests for EmbeddingRepository."""

    def test_replace_current_keeps_one_current(self, database: Database):
        """A new vector should demote the previous one to history."""
        nodes, embeddings = NodeRepository(database), EmbeddingRepository(database)
        node = make_node()
        nodes.insert(node)

        for i in range(2):
            embeddings.replace_current(EmbeddingRecord(
                id=str(uuid.uuid4()),
                tenant_id="tenant-a",
                entity_kind=EntityKind.NODE,
                entity_id=node.id,
                provider="test",
                vector=np.full(4, i + 1, dtype=np.float32),
                context_text=f"text {i}",
                context_hash=f"hash-{i}",
                generated_at=utc_now(),
            ))

        current = embeddings.get_current("tenant-a", EntityKind.NODE, node.id)
        history = embeddings.history("tenant-a", EntityKind.NODE, node.id)

        assert current.context_hash == "hash-1"
        assert np.allclose(current.vector, [2, 2, 2, 2])
        assert len(history) == 2
        assert sum(1 for record in history if record.is_current) == 1


class TestSnapshotRepository:
    """Tests for SnapshotRepository."""

    def test_transition_is_conditional(self, database: Database):
        """A transition should apply only from the listed statuses."""
        repo = SnapshotRepository(database)
        snapshot = SnapshotRecord(
            id=str(uuid.uuid4()),
            tenant_id="tenant-a",
            name="Weekly",
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        repo.insert(snapshot)

        moved = repo.transition("tenant-a", snapshot.id, [SnapshotStatus.PENDING], {
            "status": SnapshotStatus.GENERATING,
        })
        again = repo.transition("tenant-a", snapshot.id, [SnapshotStatus.PENDING], {
            "status": SnapshotStatus.GENERATING,
        })

        assert moved is True
        assert again is False
        assert repo.get("tenant-a", snapshot.id).status is SnapshotStatus.GENERATING
