"""
Embeddings module.

Embedding providers, vector similarity search and the semantic search
adapter that keeps node and edge vectors current.
"""

from intel_graph.embeddings.provider import (
    EmbeddingProvider,
    EmbeddingVector,
    SentenceTransformerProvider,
)
from intel_graph.embeddings.vector_search import (
    StoredEmbeddingSearch,
    VectorMatch,
    VectorSearch,
)
from intel_graph.embeddings.semantic import (
    EmbeddingBatchResult,
    SemanticMatch,
    SemanticSearchAdapter,
    context_hash,
    edge_context,
    node_context,
)

__all__ = [
    "EmbeddingProvider",
    "EmbeddingVector",
    "SentenceTransformerProvider",
    "StoredEmbeddingSearch",
    "VectorMatch",
    "VectorSearch",
    "EmbeddingBatchResult",
    "SemanticMatch",
    "SemanticSearchAdapter",
    "context_hash",
    "edge_context",
    "node_context",
]
