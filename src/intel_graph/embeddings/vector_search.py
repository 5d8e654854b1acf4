"""
Vector similarity search over stored node embeddings.

The ranking collaborator takes a query vector and returns node ids with
their cosine similarity and the context text that was embedded.
``StoredEmbeddingSearch`` does this with numpy over the current vectors
kept in SQLite; an external vector index can stand in through the
``VectorSearch`` protocol.
"""

from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from intel_graph.core.exceptions import VectorSearchError
from intel_graph.storage import Database, EmbeddingRepository
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class VectorMatch:
    entity_id: str
    similarity: float
    matched_text: str


class VectorSearch(Protocol):
    def search(
        self,
        vector: np.ndarray,
        tenant_id: str,
        node_types: Sequence[str] | None,
        threshold: float,
        limit: int,
    ) -> list[VectorMatch]:
        ...


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class StoredEmbeddingSearch:
    """
    Exact cosine search over the tenant's current node vectors.

    Vectors whose dimension differs from the query (left over from an
    earlier model) are skipped.

    Example:
        >>> search = StoredEmbeddingSearch(database)
        >>> matches = search.search(query_vector, "tenant-1", None, threshold=0.7, limit=20)
        >>> [(m.entity_id, round(m.similarity, 2)) for m in matches]
    """

    def __init__(self, database: Database) -> None:
        self.embeddings = EmbeddingRepository(database)

    def search(
        self,
        vector: np.ndarray,
        tenant_id: str,
        node_types: Sequence[str] | None,
        threshold: float,
        limit: int,
    ) -> list[VectorMatch]:
        query = np.asarray(vector, dtype=np.float32).reshape(-1)
        if query.size == 0:
            raise VectorSearchError("Query vector is empty")

        records = [
            record
            for record in self.embeddings.current_node_vectors(tenant_id, node_types)
            if record.dimensions == query.size
        ]
        if not records:
            return []

        matrix = _normalize_rows(np.stack([record.vector for record in records]))
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []
        scores = matrix @ (query / query_norm)

        candidates = np.flatnonzero(scores >= threshold)
        if candidates.size == 0:
            return []
        k = min(limit, candidates.size)
        top = candidates[np.argsort(-scores[candidates], kind="stable")[:k]]

        logger.debug(
            f"Vector search over {len(records)} vector(s) returned {k} match(es)"
        )
        return [
            VectorMatch(
                entity_id=records[i].entity_id,
                similarity=float(scores[i]),
                matched_text=records[i].context_text,
            )
            for i in top
        ]
