"""
Request models for graph operations.

Every public operation accepts either one of these models or a plain
mapping that is validated into one. Field names follow the stored
columns. Update models rely on ``model_fields_set`` so that an omitted
field is left alone while an explicit ``None`` clears the column.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping, TypeVar

from pydantic import BaseModel, Field, JsonValue, ValidationError, field_validator

from intel_graph.core.exceptions import InvalidInputError
from intel_graph.storage.models import (
    EdgeType,
    NodeType,
    SnapshotType,
    TraversalDirection,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

Tag = str
SortOrder = Literal["asc", "desc"]


def parse_input(model_cls: type[ModelT], data: ModelT | Mapping[str, Any] | None) -> ModelT:
    """
    Validate ``data`` into ``model_cls``.

    Raises:
        InvalidInputError: With the first failing field and all pydantic errors
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(dict(data or {}))
    except ValidationError as e:
        errors = e.errors(include_url=False)
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise InvalidInputError(
            f"Invalid {model_cls.__name__}: {first.get('msg', 'validation failed')}",
            field=field,
            details={"errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in errors
            ]},
        ) from e


def enum_values(values: list[Enum] | None) -> list[str] | None:
    """Turn a validated enum list into the stored string values."""
    if not values:
        return None
    return [value.value for value in values]


class _Input(BaseModel):
    model_config = {"extra": "forbid", "str_strip_whitespace": True}


def _check_tags(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    if any(len(value) > 100 for value in values):
        raise ValueError("tags and categories must be at most 100 characters")
    # Set semantics, first occurrence keeps its position.
    return list(dict.fromkeys(values))


# =============================================================================
# Nodes
# =============================================================================


class NodeCreate(_Input):
    node_type: NodeType
    label: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    external_id: str | None = Field(default=None, max_length=255)
    source_system: str | None = Field(default=None, max_length=100)
    source_table: str | None = Field(default=None, max_length=100)
    properties: dict[str, JsonValue] = Field(default_factory=dict)
    tags: list[Tag] = Field(default_factory=list, max_length=50)
    categories: list[Tag] = Field(default_factory=list, max_length=20)
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)
    is_active: bool = True

    @field_validator("tags", "categories")
    @classmethod
    def dedupe_tags(cls, v: list[str] | None) -> list[str] | None:
        return _check_tags(v)


class NodeUpdate(_Input):
    label: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    properties: dict[str, JsonValue] | None = None
    tags: list[Tag] | None = Field(default=None, max_length=50)
    categories: list[Tag] | None = Field(default=None, max_length=20)
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_active: bool | None = None

    @field_validator("tags", "categories")
    @classmethod
    def dedupe_tags(cls, v: list[str] | None) -> list[str] | None:
        return _check_tags(v)

    @field_validator("label", "properties", "tags", "categories", "is_active")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        # These columns are NOT NULL; an explicit empty value is still allowed.
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class NodeListQuery(_Input):
    node_types: list[NodeType] | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    search: str | None = Field(default=None, max_length=500)
    source_system: str | None = Field(default=None, max_length=100)
    is_active: bool | None = True
    cluster_id: str | None = None
    community_id: str | None = Field(default=None, max_length=100)
    sort_by: Literal[
        "created_at", "updated_at", "label", "degree_centrality", "pagerank_score"
    ] = "created_at"
    sort_order: SortOrder = "desc"
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# Edges
# =============================================================================


class EdgeCreate(_Input):
    source_node_id: str = Field(min_length=1)
    target_node_id: str = Field(min_length=1)
    edge_type: EdgeType
    label: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    properties: dict[str, JsonValue] = Field(default_factory=dict)
    weight: float = Field(default=1.0, ge=0.0, le=1000.0)
    is_bidirectional: bool = False
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    source_system: str | None = Field(default=None, max_length=100)
    inference_method: str | None = Field(default=None, max_length=100)
    confidence_score: float = Field(default=1.0, ge=0.0, le=1.0)
    is_active: bool = True


class EdgeUpdate(_Input):
    label: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    properties: dict[str, JsonValue] | None = None
    weight: float | None = Field(default=None, ge=0.0, le=1000.0)
    is_bidirectional: bool | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_active: bool | None = None

    @field_validator("properties", "weight", "is_bidirectional", "is_active")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class EdgeListQuery(_Input):
    edge_types: list[EdgeType] | None = None
    source_node_id: str | None = None
    target_node_id: str | None = None
    node_id: str | None = None
    min_weight: float | None = Field(default=None, ge=0.0)
    max_weight: float | None = Field(default=None, ge=0.0)
    is_active: bool | None = None
    is_bidirectional: bool | None = None
    sort_by: Literal["created_at", "weight"] = "created_at"
    sort_order: SortOrder = "desc"
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# Queries and traversal
# =============================================================================


class QueryOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class NodeFilter(_Input):
    field: str = Field(min_length=1, max_length=100)
    operator: str
    value: JsonValue = None


class GraphQuery(_Input):
    semantic_query: str | None = Field(default=None, max_length=1000)
    semantic_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    start_node_id: str | None = None
    direction: TraversalDirection = TraversalDirection.BOTH
    max_depth: int | None = Field(default=None, ge=1, le=10)
    node_types: list[NodeType] | None = None
    edge_types: list[EdgeType] | None = None
    node_filters: list[NodeFilter] = Field(default_factory=list, max_length=20)
    group_by: Literal["node_type", "edge_type", "cluster_id", "community_id"] | None = None
    include_edges: bool = True
    limit: int = Field(default=100, ge=1, le=1000)


class TraverseRequest(_Input):
    start_node_id: str = Field(min_length=1)
    direction: TraversalDirection = TraversalDirection.BOTH
    max_depth: int | None = Field(default=None, ge=1, le=10)
    node_types: list[NodeType] | None = None
    edge_types: list[EdgeType] | None = None
    limit: int | None = Field(default=None, ge=1, le=1000)
    timeout_seconds: float | None = Field(default=None, gt=0.0)


class ShortestPathRequest(_Input):
    start_node_id: str = Field(min_length=1)
    end_node_id: str = Field(min_length=1)
    max_depth: int | None = Field(default=None, ge=1, le=10)
    edge_types: list[EdgeType] | None = None
    timeout_seconds: float | None = Field(default=None, gt=0.0)


class ExplainPathRequest(ShortestPathRequest):
    include_reasoning: bool = True


class NeighborsRequest(_Input):
    node_id: str = Field(min_length=1)
    direction: TraversalDirection = TraversalDirection.BOTH
    edge_types: list[EdgeType] | None = None
    limit: int = Field(default=20, ge=1, le=100)


# =============================================================================
# Merge, embeddings, metrics, snapshots
# =============================================================================


class MergeStrategy(str, Enum):
    KEEP_FIRST = "keep_first"
    KEEP_NEWEST = "keep_newest"
    MERGE_PROPERTIES = "merge_properties"
    CREATE_NEW = "create_new"


class MergeRequest(_Input):
    source_node_ids: list[str] = Field(min_length=2, max_length=10)
    strategy: MergeStrategy
    target_node_id: str | None = None
    new_label: str | None = Field(default=None, min_length=1, max_length=500)
    new_description: str | None = Field(default=None, max_length=5000)
    preserve_edges: bool = True

    @field_validator("source_node_ids")
    @classmethod
    def distinct_sources(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("source node ids must be distinct")
        return v


class EmbeddingRequest(_Input):
    node_ids: list[str] = Field(default_factory=list, max_length=100)
    edge_ids: list[str] = Field(default_factory=list, max_length=100)
    force_regenerate: bool = False


class SemanticSearchRequest(_Input):
    query: str = Field(min_length=1, max_length=1000)
    node_types: list[NodeType] | None = None
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    limit: int = Field(default=20, ge=1, le=100)


class ComputeMetricsRequest(_Input):
    compute_centrality: bool = True
    compute_clusters: bool = True
    node_types: list[NodeType] | None = None
    edge_types: list[EdgeType] | None = None


class SnapshotRequest(_Input):
    name: str = Field(min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=2000)
    snapshot_type: SnapshotType = SnapshotType.FULL
    include_nodes: bool = True
    include_edges: bool = True
    include_clusters: bool = True
    node_types: list[NodeType] | None = None
    compute_diff: bool | None = None
