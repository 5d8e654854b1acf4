"""
Semantic search adapter.

Keeps one current embedding per node and edge, regenerating it only when
the entity's context text changes, and answers free-text queries by
embedding them and ranking stored node vectors.
"""

import hashlib
import threading
import time
import uuid
import weakref
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import (
    CollaboratorError,
    EmbeddingError,
    NotFoundError,
    VectorSearchError,
)
from intel_graph.embeddings.provider import EmbeddingProvider
from intel_graph.embeddings.vector_search import VectorSearch
from intel_graph.graph_store.inputs import (
    EmbeddingRequest,
    SemanticSearchRequest,
    enum_values,
    parse_input,
)
from intel_graph.storage import (
    Database,
    EdgeRecord,
    EdgeRepository,
    EmbeddingRecord,
    EmbeddingRepository,
    EntityKind,
    GraphEventType,
    NodeRecord,
    NodeRepository,
    utc_now,
)
from intel_graph.utils.logging import get_logger
from intel_graph.utils.metrics import (
    increment_embeddings_generated,
    increment_embeddings_skipped,
)

logger = get_logger(__name__)


def node_context(node: NodeRecord) -> str:
    return f"{node.label}. {node.description or ''} Tags: {', '.join(node.tags)}"


def edge_context(edge: EdgeRecord) -> str:
    return f"Relationship: {edge.edge_type.value}. {edge.label or ''} {edge.description or ''}"


def context_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class EmbeddingBatchResult:
    node_embeddings_generated: int = 0
    edge_embeddings_generated: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return self.node_embeddings_generated + self.edge_embeddings_generated

    def to_dict(self) -> dict:
        return {
            "node_embeddings_generated": self.node_embeddings_generated,
            "edge_embeddings_generated": self.edge_embeddings_generated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class SemanticMatch:
    node: NodeRecord
    similarity: float
    matched_text: str

    def to_dict(self) -> dict:
        return {
            "node": self.node.to_dict(),
            "similarity": self.similarity,
            "matched_text": self.matched_text,
        }


class SemanticSearchAdapter:
    """
    Bridges the graph to the embedding provider and the vector search
    collaborator.

    Example:
        >>> adapter = SemanticSearchAdapter(database, audit, provider, StoredEmbeddingSearch(database))
        >>> adapter.generate_embeddings(ctx, {"node_ids": [acme.id]})
        >>> adapter.semantic_search(ctx, {"query": "product recall", "threshold": 0.5})
    """

    def __init__(
        self,
        database: Database,
        audit: AuditLog,
        provider: EmbeddingProvider,
        vector_search: VectorSearch,
    ) -> None:
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.embeddings = EmbeddingRepository(database)
        self.audit = audit
        self.provider = provider
        self.vector_search = vector_search

        self._locks: weakref.WeakValueDictionary[tuple[str, EntityKind, str], threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def generate_embeddings(
        self,
        ctx: GraphContext,
        request: EmbeddingRequest | Mapping[str, Any],
    ) -> EmbeddingBatchResult:
        """
        Embed the given nodes and edges, one at a time.

        An entity whose context hash matches its current record is skipped
        unless ``force_regenerate`` is set. Any per-entity failure,
        including an unknown id, is appended to ``errors`` and the batch
        carries on.
        """
        request = parse_input(EmbeddingRequest, request)
        result = EmbeddingBatchResult()

        work = [(EntityKind.NODE, nid) for nid in request.node_ids]
        work += [(EntityKind.EDGE, eid) for eid in request.edge_ids]
        for kind, entity_id in work:
            try:
                generated = self._embed_entity(ctx, kind, entity_id, request.force_regenerate)
            except Exception as e:
                logger.warning(f"Embedding failed for {kind.value} {entity_id}: {e}")
                result.errors.append({"id": entity_id, "error": str(e)})
                continue
            if generated and kind is EntityKind.NODE:
                result.node_embeddings_generated += 1
            elif generated:
                result.edge_embeddings_generated += 1
            else:
                result.skipped += 1

        increment_embeddings_generated(result.generated)
        increment_embeddings_skipped(result.skipped)
        logger.info(
            f"Embeddings: {result.generated} generated, {result.skipped} skipped, "
            f"{len(result.errors)} failed"
        )
        return result

    def _embed_entity(
        self,
        ctx: GraphContext,
        kind: EntityKind,
        entity_id: str,
        force: bool,
    ) -> bool:
        """Return True if a new vector was stored, False if the current one was kept."""
        if kind is EntityKind.NODE:
            node = self.nodes.get(ctx.tenant_id, entity_id)
            if node is None:
                raise NotFoundError("node", entity_id)
            text = node_context(node)
        else:
            edge = self.edges.get(ctx.tenant_id, entity_id)
            if edge is None:
                raise NotFoundError("edge", entity_id)
            text = edge_context(edge)
        digest = context_hash(text)

        # Flip and insert for one entity must not interleave.
        with self._entity_lock(ctx.tenant_id, kind, entity_id):
            current = self.embeddings.get_current(ctx.tenant_id, kind, entity_id)
            if current is not None and current.context_hash == digest and not force:
                return False

            vector = self.provider.embed(text)
            if vector.values is None or vector.values.size == 0:
                raise EmbeddingError("Provider returned an empty vector", text_length=len(text))

            self.embeddings.replace_current(EmbeddingRecord(
                id=str(uuid.uuid4()),
                tenant_id=ctx.tenant_id,
                entity_kind=kind,
                entity_id=entity_id,
                provider=self.provider.name,
                vector=vector.values.reshape(-1),
                context_text=text,
                context_hash=digest,
                model_version=vector.model_version,
                generated_at=utc_now(),
            ))

        self.audit.record(
            ctx,
            GraphEventType.EMBEDDING_UPDATED if current else GraphEventType.EMBEDDING_GENERATED,
            node_id=entity_id if kind is EntityKind.NODE else None,
            edge_id=entity_id if kind is EntityKind.EDGE else None,
            metadata={
                "provider": self.provider.name,
                "model_version": vector.model_version,
                "dimensions": int(vector.values.size),
                "forced": force,
            },
        )
        return True

    def semantic_search(
        self,
        ctx: GraphContext,
        request: SemanticSearchRequest | Mapping[str, Any],
    ) -> list[SemanticMatch]:
        """
        Rank active nodes by similarity to ``query``.

        Raises:
            EmbeddingError: If the query cannot be embedded
            VectorSearchError: If the vector search collaborator fails
        """
        request = parse_input(SemanticSearchRequest, request)
        started = time.perf_counter()
        matches = self.run_search(
            ctx,
            request.query,
            node_types=enum_values(request.node_types),
            threshold=request.threshold,
            limit=request.limit,
        )
        self.audit.record(
            ctx,
            GraphEventType.QUERY_EXECUTED,
            query={"semantic_query": request.query, **request.model_dump(mode="json", exclude={"query"})},
            result_count=len(matches),
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )
        return matches

    def run_search(
        self,
        ctx: GraphContext,
        text: str,
        node_types: Sequence[str] | None,
        threshold: float,
        limit: int,
    ) -> list[SemanticMatch]:
        """Search without auditing; query_graph records its own entry."""
        try:
            query_vector = self.provider.embed(text)
        except CollaboratorError:
            raise
        except Exception as e:
            raise EmbeddingError(
                "Failed to embed search query",
                text_length=len(text),
                details={"error": str(e)},
            ) from e

        try:
            hits = self.vector_search.search(
                query_vector.values, ctx.tenant_id, node_types, threshold, limit
            )
        except CollaboratorError:
            raise
        except Exception as e:
            raise VectorSearchError("Vector search failed", {"error": str(e)}) from e

        found = self.nodes.get_many(ctx.tenant_id, [hit.entity_id for hit in hits])
        matches = [
            SemanticMatch(node=found[hit.entity_id], similarity=hit.similarity, matched_text=hit.matched_text)
            for hit in hits
            if hit.entity_id in found and found[hit.entity_id].is_active
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    def current_embedding(
        self,
        ctx: GraphContext,
        kind: EntityKind,
        entity_id: str,
    ) -> EmbeddingRecord | None:
        return self.embeddings.get_current(ctx.tenant_id, kind, entity_id)

    def _entity_lock(self, tenant_id: str, kind: EntityKind, entity_id: str) -> threading.Lock:
        key = (tenant_id, kind, entity_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock
