"""
Core module for the Intelligence Graph service.

Contains the request context and the exception hierarchy used throughout
the application.
"""

from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import (
    IntelGraphError,
    ConfigurationError,
    StorageError,
    DatabaseError,
    NotFoundError,
    InvalidInputError,
    InvalidEdgeError,
    QueryError,
    FilterExpressionError,
    TraversalTimeoutError,
    TraversalCancelledError,
    MergeError,
    SnapshotError,
    SnapshotStateError,
    CollaboratorError,
    EmbeddingError,
    VectorSearchError,
    ReasoningError,
)

__all__ = [
    "GraphContext",
    # Base
    "IntelGraphError",
    "ConfigurationError",
    # Storage
    "StorageError",
    "DatabaseError",
    "NotFoundError",
    # Input
    "InvalidInputError",
    "InvalidEdgeError",
    # Query
    "QueryError",
    "FilterExpressionError",
    "TraversalTimeoutError",
    "TraversalCancelledError",
    # Merge / snapshots
    "MergeError",
    "SnapshotError",
    "SnapshotStateError",
    # Collaborators
    "CollaboratorError",
    "EmbeddingError",
    "VectorSearchError",
    "ReasoningError",
]
