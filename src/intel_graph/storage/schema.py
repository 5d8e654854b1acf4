"""
Database schema definition and migration.

JSON-valued columns (properties, tags, metrics, payloads) are stored as
TEXT and queried with SQLite's JSON1 functions. Vectors are float32 BLOBs.
"""

from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_TABLES_V1 = (
    """
    CREATE TABLE IF NOT EXISTS nodes (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        node_type TEXT NOT NULL,
        external_id TEXT,
        source_system TEXT,
        source_table TEXT,
        label TEXT NOT NULL,
        description TEXT,
        properties TEXT NOT NULL DEFAULT '{}',
        tags TEXT NOT NULL DEFAULT '[]',
        categories TEXT NOT NULL DEFAULT '[]',
        valid_from TEXT,
        valid_to TEXT,
        degree_centrality REAL,
        betweenness_centrality REAL,
        closeness_centrality REAL,
        pagerank_score REAL,
        cluster_id TEXT,
        community_id TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        confidence_score REAL NOT NULL DEFAULT 1.0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT,
        updated_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS edges (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        source_node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
        target_node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
        edge_type TEXT NOT NULL,
        label TEXT,
        description TEXT,
        properties TEXT NOT NULL DEFAULT '{}',
        weight REAL NOT NULL DEFAULT 1.0,
        is_bidirectional INTEGER NOT NULL DEFAULT 0,
        valid_from TEXT,
        valid_to TEXT,
        source_system TEXT,
        inference_method TEXT,
        confidence_score REAL NOT NULL DEFAULT 1.0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS node_embeddings (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        model_version TEXT,
        vector BLOB NOT NULL,
        dimensions INTEGER NOT NULL,
        context_text TEXT NOT NULL,
        context_hash TEXT NOT NULL,
        is_current INTEGER NOT NULL DEFAULT 1,
        generated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS edge_embeddings (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        edge_id TEXT NOT NULL REFERENCES edges(id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        model_version TEXT,
        vector BLOB NOT NULL,
        dimensions INTEGER NOT NULL,
        context_text TEXT NOT NULL,
        context_hash TEXT NOT NULL,
        is_current INTEGER NOT NULL DEFAULT 1,
        generated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        snapshot_type TEXT NOT NULL DEFAULT 'full',
        status TEXT NOT NULL DEFAULT 'pending',
        node_count INTEGER NOT NULL DEFAULT 0,
        edge_count INTEGER NOT NULL DEFAULT 0,
        cluster_count INTEGER NOT NULL DEFAULT 0,
        metrics TEXT,
        nodes TEXT,
        edges TEXT,
        clusters TEXT,
        node_ids TEXT,
        edge_ids TEXT,
        previous_snapshot_id TEXT,
        diff TEXT,
        options TEXT NOT NULL DEFAULT '{}',
        started_at TEXT,
        completed_at TEXT,
        error_message TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        node_id TEXT,
        edge_id TEXT,
        snapshot_id TEXT,
        actor_id TEXT,
        actor_type TEXT,
        changes TEXT,
        metadata TEXT,
        query TEXT,
        result_count INTEGER,
        execution_time_ms REAL,
        created_at TEXT NOT NULL
    )
    """,
)

_INDEXES_V1 = (
    "CREATE INDEX IF NOT EXISTS idx_nodes_tenant_type ON nodes(tenant_id, node_type)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_tenant_created ON nodes(tenant_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_cluster ON nodes(tenant_id, cluster_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(tenant_id, source_node_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(tenant_id, target_node_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_type ON edges(tenant_id, edge_type)",
    "CREATE INDEX IF NOT EXISTS idx_node_embeddings_current ON node_embeddings(node_id, is_current)",
    "CREATE INDEX IF NOT EXISTS idx_edge_embeddings_current ON edge_embeddings(edge_id, is_current)",
    "CREATE INDEX IF NOT EXISTS idx_snapshots_tenant ON snapshots(tenant_id, status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_tenant ON audit_log(tenant_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_node ON audit_log(tenant_id, node_id)",
)


class SchemaManager:
    """
    Creates the graph tables and tracks the schema version.

    Example:
        >>> manager = SchemaManager(connection)
        >>> manager.initialize()
        >>> manager.get_version()
        1
    """

    def __init__(self, connection) -> None:
        self.conn = connection

    def initialize(self) -> None:
        """Create all tables and indexes if the database is new."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)

        current_version = self.get_version()
        if current_version:
            logger.debug(f"Schema version {current_version} already exists")
            if self.needs_migration():
                self.migrate()
            return

        self.conn.execute("BEGIN IMMEDIATE")
        try:
            self._create_schema_v1()
            self.conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info(f"Created schema version {SCHEMA_VERSION}")

    def _create_schema_v1(self) -> None:
        for statement in _TABLES_V1:
            self.conn.execute(statement)
        for statement in _INDEXES_V1:
            self.conn.execute(statement)

    def get_version(self) -> int:
        """Get current schema version (0 for a fresh database)."""
        cursor = self.conn.execute("SELECT MAX(version) FROM schema_version")
        version = cursor.fetchone()[0]
        return version or 0

    def needs_migration(self) -> bool:
        return self.get_version() < SCHEMA_VERSION

    def migrate(self) -> None:
        """Run pending migrations."""
        current = self.get_version()
        if current >= SCHEMA_VERSION:
            return
        logger.info(f"Migrating from version {current} to {SCHEMA_VERSION}")
        self.conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
