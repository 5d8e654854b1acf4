"""
Intelligence Graph service.

``IntelligenceGraph`` wires the storage, engines and collaborators
together and is the one object callers (HTTP handlers, jobs, the CLI)
need. Every operation takes a ``GraphContext`` naming the tenant.
"""

from typing import Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.config import Settings, get_settings
from intel_graph.core.context import GraphContext
from intel_graph.embeddings import (
    EmbeddingProvider,
    SemanticSearchAdapter,
    SentenceTransformerProvider,
    StoredEmbeddingSearch,
    VectorSearch,
)
from intel_graph.graph_store import (
    GraphStore,
    MergeEngine,
    MetricsEngine,
    QueryEngine,
    TraversalEngine,
)
from intel_graph.reasoning import LocalTextGenerator, PathExplainer, TextGenerator
from intel_graph.snapshots import SnapshotManager, TaskRunner, ThreadedTaskRunner
from intel_graph.storage import (
    AuditLogRecord,
    AuditLogRepository,
    Database,
    EdgeRepository,
    GraphEventType,
    NodeRepository,
    SnapshotRepository,
)
from intel_graph.utils.logging import get_logger
from intel_graph.utils.metrics import Metrics

logger = get_logger(__name__)


class IntelligenceGraph:
    """
    Facade over the graph subsystems.

    Example:
        >>> graph = IntelligenceGraph.from_settings(settings)
        >>> ctx = GraphContext(tenant_id="acme")
        >>> a = graph.create_node(ctx, {"node_type": "organization", "label": "Acme"})
        >>> b = graph.create_node(ctx, {"node_type": "competitor", "label": "Globex"})
        >>> graph.create_edge(ctx, {"source_node_id": a.id, "target_node_id": b.id,
        ...                         "edge_type": "contrasts_with"})
        >>> graph.traverse(ctx, {"start_node_id": a.id}).nodes
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        embedding_provider: EmbeddingProvider,
        vector_search: VectorSearch,
        text_generator: TextGenerator | None,
        task_runner: TaskRunner,
    ) -> None:
        self.settings = settings
        self.db = database

        self.audit = AuditLog(AuditLogRepository(database))
        self.store = GraphStore(database, self.audit)
        self.traversal = TraversalEngine(database, self.audit, settings.traversal)
        self.semantic = SemanticSearchAdapter(
            database, self.audit, embedding_provider, vector_search
        )
        self.queries = QueryEngine(database, self.audit, self.traversal, self.semantic)
        self.merger = MergeEngine(database, self.audit)
        self.metrics = MetricsEngine(database, self.audit)
        self.explainer = PathExplainer(
            self.traversal, self.audit, text_generator, enabled=settings.reasoning.enabled
        )
        self.snapshots = SnapshotManager(
            database,
            self.audit,
            self.metrics,
            task_runner,
            compute_diff_by_default=settings.snapshots.compute_diff_by_default,
        )

        self._nodes = NodeRepository(database)
        self._edges = EdgeRepository(database)
        self._snapshot_repo = SnapshotRepository(database)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        database: Database | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        vector_search: VectorSearch | None = None,
        text_generator: TextGenerator | None = None,
        task_runner: TaskRunner | None = None,
    ) -> "IntelligenceGraph":
        """
        Build the service, creating default collaborators for anything
        not passed in. Models load lazily on first use.
        """
        settings = settings or get_settings()
        database = database or Database.from_settings(settings)
        if embedding_provider is None:
            embedding_provider = SentenceTransformerProvider.from_settings(settings)
        if vector_search is None:
            vector_search = StoredEmbeddingSearch(database)
        if text_generator is None and settings.reasoning.enabled:
            text_generator = LocalTextGenerator.from_settings(settings)
        if task_runner is None:
            task_runner = ThreadedTaskRunner(settings.snapshots.max_workers)

        return cls(
            settings=settings,
            database=database,
            embedding_provider=embedding_provider,
            vector_search=vector_search,
            text_generator=text_generator,
            task_runner=task_runner,
        )

    # Entity store
    def create_node(self, ctx: GraphContext, data: Mapping[str, Any]):
        return self.store.create_node(ctx, data)

    def get_node(self, ctx: GraphContext, node_id: str):
        return self.store.get_node(ctx, node_id)

    def update_node(self, ctx: GraphContext, node_id: str, data: Mapping[str, Any]):
        return self.store.update_node(ctx, node_id, data)

    def delete_node(self, ctx: GraphContext, node_id: str) -> None:
        self.store.delete_node(ctx, node_id)

    def list_nodes(self, ctx: GraphContext, query: Mapping[str, Any] | None = None):
        return self.store.list_nodes(ctx, query)

    def get_node_with_connections(self, ctx: GraphContext, node_id: str):
        return self.store.get_node_with_connections(ctx, node_id)

    def create_edge(self, ctx: GraphContext, data: Mapping[str, Any]):
        return self.store.create_edge(ctx, data)

    def get_edge(self, ctx: GraphContext, edge_id: str):
        return self.store.get_edge(ctx, edge_id)

    def update_edge(self, ctx: GraphContext, edge_id: str, data: Mapping[str, Any]):
        return self.store.update_edge(ctx, edge_id, data)

    def delete_edge(self, ctx: GraphContext, edge_id: str) -> None:
        self.store.delete_edge(ctx, edge_id)

    def list_edges(self, ctx: GraphContext, query: Mapping[str, Any] | None = None):
        return self.store.list_edges(ctx, query)

    def get_edge_with_nodes(self, ctx: GraphContext, edge_id: str):
        return self.store.get_edge_with_nodes(ctx, edge_id)

    # Queries and traversal
    def query_graph(self, ctx: GraphContext, query: Mapping[str, Any]):
        return self.queries.query_graph(ctx, query)

    def traverse(self, ctx: GraphContext, request: Mapping[str, Any], cancel=None):
        return self.traversal.traverse(ctx, request, cancel)

    def find_shortest_path(self, ctx: GraphContext, request: Mapping[str, Any], cancel=None):
        return self.traversal.find_shortest_path(ctx, request, cancel)

    def neighbors(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.traversal.neighbors(ctx, request)

    def explain_path(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.explainer.explain_path(ctx, request)

    # Merge, embeddings, metrics
    def merge_nodes(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.merger.merge_nodes(ctx, request)

    def generate_embeddings(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.semantic.generate_embeddings(ctx, request)

    def semantic_search(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.semantic.semantic_search(ctx, request)

    def compute_metrics(self, ctx: GraphContext, request: Mapping[str, Any] | None = None):
        return self.metrics.compute_metrics(ctx, request)

    def get_metrics(self, ctx: GraphContext) -> dict:
        return self.metrics.get_metrics(ctx)

    # Snapshots
    def create_snapshot(self, ctx: GraphContext, request: Mapping[str, Any]):
        return self.snapshots.create_snapshot(ctx, request)

    def regenerate_snapshot(self, ctx: GraphContext, snapshot_id: str):
        return self.snapshots.regenerate_snapshot(ctx, snapshot_id)

    def get_snapshot(self, ctx: GraphContext, snapshot_id: str):
        return self.snapshots.get_snapshot(ctx, snapshot_id)

    def list_snapshots(self, ctx: GraphContext, status=None, limit: int = 20, offset: int = 0):
        return self.snapshots.list_snapshots(ctx, status=status, limit=limit, offset=offset)

    def wait_for_snapshot(self, ctx: GraphContext, snapshot_id: str, timeout: float | None = None):
        return self.snapshots.wait_for(ctx, snapshot_id, timeout)

    # Audit and statistics
    def list_audit_logs(
        self,
        ctx: GraphContext,
        event_type: GraphEventType | str | None = None,
        node_id: str | None = None,
        edge_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        return self.audit.list_entries(ctx, event_type, node_id, edge_id, limit, offset)

    def get_stats(self, ctx: GraphContext) -> dict:
        """Counts, type distributions and the most recent nodes and snapshots."""
        tenant = ctx.tenant_id
        recent_snapshots, total_snapshots = self._snapshot_repo.list(tenant, limit=5)
        return {
            "total_nodes": self._nodes.count(tenant),
            "active_nodes": self._nodes.count(tenant, active_only=True),
            "total_edges": self._edges.count(tenant),
            "active_edges": self._edges.count(tenant, active_only=True),
            "nodes_by_type": self._nodes.count_by_type(tenant),
            "edges_by_type": self._edges.count_by_type(tenant),
            "total_snapshots": total_snapshots,
            "recent_nodes": [node.to_dict() for node in self._nodes.recent(tenant, 5)],
            "recent_snapshots": [
                snapshot.to_dict(include_payloads=False) for snapshot in recent_snapshots
            ],
        }

    def runtime_metrics(self) -> dict:
        """In-process counters and timers since start-up."""
        return Metrics.get().snapshot()

    def close(self) -> None:
        self.snapshots.shutdown(wait=True)
        self.db.close()
        logger.debug("IntelligenceGraph closed")

    def __enter__(self) -> "IntelligenceGraph":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"IntelligenceGraph(db={self.db!r})"
