"""
Custom exceptions for the Intelligence Graph service.

Every error raised by the package inherits from IntelGraphError, so
callers can catch the whole family in one place.

Exception Hierarchy:
    IntelGraphError (base)
    ├── ConfigurationError
    ├── StorageError
    │   ├── DatabaseError
    │   └── NotFoundError
    ├── InvalidInputError
    │   └── InvalidEdgeError
    ├── QueryError
    │   ├── FilterExpressionError (also InvalidInputError)
    │   ├── TraversalTimeoutError
    │   └── TraversalCancelledError
    ├── MergeError
    ├── SnapshotError
    │   └── SnapshotStateError
    └── CollaboratorError
        ├── EmbeddingError
        ├── VectorSearchError
        └── ReasoningError
"""

from typing import Any


class IntelGraphError(Exception):
    """
    Base exception for all Intelligence Graph errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(
                f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, details={self.details!r})"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(IntelGraphError):
    """
    Error in configuration loading or validation.

    Raised when the YAML file is missing or malformed, or when a value
    fails validation.
    """

    pass


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(IntelGraphError):
    """Base error for persistence operations."""

    pass


class DatabaseError(StorageError):
    """
    Error in SQLite database operations.

    Raised when:
    - Database connection fails
    - Query execution fails
    - Schema migration fails
    - Constraint violations occur
    """

    def __init__(
        self,
        message: str,
        query: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if query:
            details["query"] = query[:200] + \
                "..." if len(query) > 200 else query
        super().__init__(message, details)
        self.query = query


class NotFoundError(StorageError):
    """
    A write or traversal referenced an entity that does not exist.

    Reads of absent entities return None instead of raising.
    """

    def __init__(
        self,
        entity: str,
        entity_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["entity"] = entity
        details["id"] = entity_id
        super().__init__(f"{entity.capitalize()} not found", details)
        self.entity = entity
        self.entity_id = entity_id


# =============================================================================
# Input Errors
# =============================================================================


class InvalidInputError(IntelGraphError):
    """
    A request failed validation before anything was written.

    Raised for missing required fields, out-of-range values and
    unknown enum strings.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class InvalidEdgeError(InvalidInputError):
    """An edge references an endpoint that is missing from the tenant."""

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if node_id:
            details["node_id"] = node_id
        super().__init__(message, details=details)
        self.node_id = node_id


# =============================================================================
# Query Errors
# =============================================================================


class QueryError(IntelGraphError):
    """Base error for query and traversal operations."""

    pass


class FilterExpressionError(QueryError, InvalidInputError):
    """
    A node filter used an unknown field or operator, or a value of the
    wrong shape for its operator.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        operator: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if operator:
            details["operator"] = operator
        InvalidInputError.__init__(self, message, field=field, details=details)
        self.operator = operator


class TraversalTimeoutError(QueryError):
    """A traversal ran past its wall-clock budget."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        visited: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if visited is not None:
            details["visited"] = visited
        super().__init__(message, details)
        self.timeout_seconds = timeout_seconds
        self.visited = visited


class TraversalCancelledError(QueryError):
    """A traversal was stopped through its cancel token."""

    pass


# =============================================================================
# Merge / Snapshot Errors
# =============================================================================


class MergeError(IntelGraphError):
    """A merge request could not be carried out."""

    pass


class SnapshotError(IntelGraphError):
    """Base error for snapshot operations."""

    pass


class SnapshotStateError(SnapshotError):
    """
    The snapshot is in a status that does not allow the operation,
    e.g. regenerating one that is still generating.
    """

    def __init__(
        self,
        message: str,
        snapshot_id: str | None = None,
        status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if snapshot_id:
            details["snapshot_id"] = snapshot_id
        if status:
            details["status"] = status
        super().__init__(message, details)
        self.snapshot_id = snapshot_id
        self.status = status


# =============================================================================
# Collaborator Errors
# =============================================================================


class CollaboratorError(IntelGraphError):
    """
    Base error for external collaborators (embedding provider, vector
    search, text generation).

    These are caught at the adapter boundary and turned into fallback
    values or per-item error records.
    """

    pass


class EmbeddingError(CollaboratorError):
    """
    Error in embedding generation.

    Raised when:
    - Embedding model fails to load
    - Text encoding fails
    - The provider returns an empty vector
    """

    def __init__(
        self,
        message: str,
        text_length: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if text_length:
            details["text_length"] = text_length
        super().__init__(message, details)
        self.text_length = text_length


class VectorSearchError(CollaboratorError):
    """The vector search collaborator failed."""

    pass


class ReasoningError(CollaboratorError):
    """
    Text generation failed.

    Raised when:
    - Model files not found or fail to load
    - Generation fails
    """

    def __init__(
        self,
        message: str,
        model_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if model_name:
            details["model_name"] = model_name
        super().__init__(message, details)
        self.model_name = model_name
