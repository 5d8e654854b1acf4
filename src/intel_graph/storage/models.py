"""
Data models for the storage layer.

Records are plain dataclasses. ``to_dict`` gives a JSON-friendly view
(enums as values, datetimes as ISO strings) used for API payloads and
snapshot exports; ``from_row`` builds a record from a database row.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np
from pydantic import JsonValue


class NodeType(str, Enum):
    """Closed set of entity kinds a node can represent."""

    ORGANIZATION = "organization"
    USER = "user"
    TEAM = "team"
    PRESS_RELEASE = "press_release"
    MEDIA_COVERAGE = "media_coverage"
    JOURNALIST = "journalist"
    PUBLICATION = "publication"
    MEDIA_LIST = "media_list"
    PITCH = "pitch"
    OUTREACH_CAMPAIGN = "outreach_campaign"
    MEDIA_MENTION = "media_mention"
    MEDIA_ALERT = "media_alert"
    SENTIMENT_SIGNAL = "sentiment_signal"
    PERFORMANCE_METRIC = "performance_metric"
    KPI_INDICATOR = "kpi_indicator"
    TREND_SIGNAL = "trend_signal"
    COMPETITOR = "competitor"
    COMPETITIVE_INSIGHT = "competitive_insight"
    MARKET_TREND = "market_trend"
    CRISIS_EVENT = "crisis_event"
    CRISIS_RESPONSE = "crisis_response"
    RISK_FACTOR = "risk_factor"
    RISK_ASSESSMENT = "risk_assessment"
    ESCALATION = "escalation"
    BRAND_SIGNAL = "brand_signal"
    BRAND_MENTION = "brand_mention"
    REPUTATION_SCORE = "reputation_score"
    COMPLIANCE_ITEM = "compliance_item"
    GOVERNANCE_POLICY = "governance_policy"
    AUDIT_FINDING = "audit_finding"
    EXECUTIVE_DIGEST = "executive_digest"
    BOARD_REPORT = "board_report"
    INVESTOR_UPDATE = "investor_update"
    COMMAND_CENTER_ALERT = "command_center_alert"
    STRATEGIC_REPORT = "strategic_report"
    STRATEGIC_INSIGHT = "strategic_insight"
    STRATEGIC_RECOMMENDATION = "strategic_recommendation"
    AUDIENCE_PERSONA = "audience_persona"
    AUDIENCE_SEGMENT = "audience_segment"
    CONTENT_BRIEF = "content_brief"
    CONTENT_PIECE = "content_piece"
    NARRATIVE = "narrative"
    CLUSTER = "cluster"
    TOPIC = "topic"
    THEME = "theme"
    EVENT = "event"
    CUSTOM = "custom"


class EdgeType(str, Enum):
    """Closed set of relationship kinds."""

    # Hierarchy
    PARENT_OF = "parent_of"
    CHILD_OF = "child_of"
    BELONGS_TO = "belongs_to"
    CONTAINS = "contains"
    # Causality
    CAUSED_BY = "caused_by"
    LEADS_TO = "leads_to"
    TRIGGERS = "triggers"
    MITIGATES = "mitigates"
    ESCALATES_TO = "escalates_to"
    # Time
    PRECEDES = "precedes"
    FOLLOWS = "follows"
    CONCURRENT_WITH = "concurrent_with"
    DURING = "during"
    # Similarity
    SIMILAR_TO = "similar_to"
    RELATED_TO = "related_to"
    CONTRASTS_WITH = "contrasts_with"
    COMPLEMENTS = "complements"
    # Attribution
    AUTHORED_BY = "authored_by"
    MENTIONS = "mentions"
    REFERENCES = "references"
    CITES = "cites"
    COVERS = "covers"
    # Influence
    INFLUENCES = "influences"
    IMPACTS = "impacts"
    DERIVES_FROM = "derives_from"
    CONTRIBUTES_TO = "contributes_to"
    # Association
    ASSOCIATED_WITH = "associated_with"
    LINKED_TO = "linked_to"
    CORRELATES_WITH = "correlates_with"
    # Sentiment
    POSITIVE_SENTIMENT_TOWARD = "positive_sentiment_toward"
    NEGATIVE_SENTIMENT_TOWARD = "negative_sentiment_toward"
    NEUTRAL_SENTIMENT_TOWARD = "neutral_sentiment_toward"
    # Strategy
    SUPPORTS_STRATEGY = "supports_strategy"
    THREATENS_STRATEGY = "threatens_strategy"
    OPPORTUNITY_FOR = "opportunity_for"
    RISK_TO = "risk_to"
    CUSTOM = "custom"


class EntityKind(str, Enum):
    """Owner of an embedding record."""

    NODE = "node"
    EDGE = "edge"


class TraversalDirection(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


class SnapshotType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    METRICS_ONLY = "metrics_only"


class SnapshotStatus(str, Enum):
    """Lifecycle of a snapshot: pending -> generating -> complete | failed."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"
    ARCHIVED = "archived"


class GraphEventType(str, Enum):
    """Kinds of audit log entries."""

    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    NODE_MERGED = "node_merged"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    EDGE_DELETED = "edge_deleted"
    EMBEDDING_GENERATED = "embedding_generated"
    EMBEDDING_UPDATED = "embedding_updated"
    SNAPSHOT_CREATED = "snapshot_created"
    SNAPSHOT_REGENERATED = "snapshot_regenerated"
    QUERY_EXECUTED = "query_executed"
    TRAVERSAL_EXECUTED = "traversal_executed"
    METRICS_COMPUTED = "metrics_computed"
    REASONING_EXECUTED = "reasoning_executed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: datetime | None) -> str | None:
    """
    Serialize a datetime for storage.

    Always includes microseconds so stored timestamps sort correctly as
    text. Naive values are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: Any) -> datetime | None:
    """Parse datetime from database value."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _parse_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


@dataclass
class NodeRecord:
    """
    An entity in the graph.

    Centrality fields and cluster_id stay None until metrics are
    computed. Inactive nodes are kept but skipped by traversal, metrics
    and default listings.
    """

    id: str
    tenant_id: str
    node_type: NodeType
    label: str
    external_id: str | None = None
    source_system: str | None = None
    source_table: str | None = None
    description: str | None = None
    properties: dict[str, JsonValue] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    degree_centrality: float | None = None
    betweenness_centrality: float | None = None
    closeness_centrality: float | None = None
    pagerank_score: float | None = None
    cluster_id: str | None = None
    community_id: str | None = None
    is_active: bool = True
    confidence_score: float = 1.0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "node_type": self.node_type.value,
            "external_id": self.external_id,
            "source_system": self.source_system,
            "source_table": self.source_table,
            "label": self.label,
            "description": self.description,
            "properties": self.properties,
            "tags": list(self.tags),
            "categories": list(self.categories),
            "valid_from": format_datetime(self.valid_from),
            "valid_to": format_datetime(self.valid_to),
            "degree_centrality": self.degree_centrality,
            "betweenness_centrality": self.betweenness_centrality,
            "closeness_centrality": self.closeness_centrality,
            "pagerank_score": self.pagerank_score,
            "cluster_id": self.cluster_id,
            "community_id": self.community_id,
            "is_active": self.is_active,
            "confidence_score": self.confidence_score,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_row(cls, row: dict) -> "NodeRecord":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            node_type=NodeType(row["node_type"]),
            label=row.get("label", ""),
            external_id=row.get("external_id"),
            source_system=row.get("source_system"),
            source_table=row.get("source_table"),
            description=row.get("description"),
            properties=_parse_json(row.get("properties"), {}),
            tags=_parse_json(row.get("tags"), []),
            categories=_parse_json(row.get("categories"), []),
            valid_from=_parse_datetime(row.get("valid_from")),
            valid_to=_parse_datetime(row.get("valid_to")),
            degree_centrality=_optional_float(row.get("degree_centrality")),
            betweenness_centrality=_optional_float(row.get("betweenness_centrality")),
            closeness_centrality=_optional_float(row.get("closeness_centrality")),
            pagerank_score=_optional_float(row.get("pagerank_score")),
            cluster_id=row.get("cluster_id"),
            community_id=row.get("community_id"),
            is_active=bool(row.get("is_active", 1)),
            confidence_score=float(row.get("confidence_score", 1.0)),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
            created_by=row.get("created_by"),
            updated_by=row.get("updated_by"),
        )


@dataclass
class EdgeRecord:
    """A typed, weighted relationship between two nodes of one tenant."""

    id: str
    tenant_id: str
    source_node_id: str
    target_node_id: str
    edge_type: EdgeType
    label: str | None = None
    description: str | None = None
    properties: dict[str, JsonValue] = field(default_factory=dict)
    weight: float = 1.0
    is_bidirectional: bool = False
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    source_system: str | None = None
    inference_method: str | None = None
    confidence_score: float = 1.0
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    def other_end(self, node_id: str) -> str:
        """Return the endpoint opposite ``node_id``."""
        return self.target_node_id if self.source_node_id == node_id else self.source_node_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "edge_type": self.edge_type.value,
            "label": self.label,
            "description": self.description,
            "properties": self.properties,
            "weight": self.weight,
            "is_bidirectional": self.is_bidirectional,
            "valid_from": format_datetime(self.valid_from),
            "valid_to": format_datetime(self.valid_to),
            "source_system": self.source_system,
            "inference_method": self.inference_method,
            "confidence_score": self.confidence_score,
            "is_active": self.is_active,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "created_by": self.created_by,
        }

    @classmethod
    def from_row(cls, row: dict) -> "EdgeRecord":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            source_node_id=row["source_node_id"],
            target_node_id=row["target_node_id"],
            edge_type=EdgeType(row["edge_type"]),
            label=row.get("label"),
            description=row.get("description"),
            properties=_parse_json(row.get("properties"), {}),
            weight=float(row.get("weight", 1.0)),
            is_bidirectional=bool(row.get("is_bidirectional", 0)),
            valid_from=_parse_datetime(row.get("valid_from")),
            valid_to=_parse_datetime(row.get("valid_to")),
            source_system=row.get("source_system"),
            inference_method=row.get("inference_method"),
            confidence_score=float(row.get("confidence_score", 1.0)),
            is_active=bool(row.get("is_active", 1)),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
            created_by=row.get("created_by"),
        )


@dataclass
class EmbeddingRecord:
    """
    One generated vector for a node or an edge.

    At most one record per owner has ``is_current`` set; older ones are
    kept as history.
    """

    id: str
    tenant_id: str
    entity_kind: EntityKind
    entity_id: str
    provider: str
    vector: np.ndarray
    context_text: str
    context_hash: str
    model_version: str | None = None
    is_current: bool = True
    generated_at: datetime | None = None

    @property
    def dimensions(self) -> int:
        return int(self.vector.shape[0])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_kind": self.entity_kind.value,
            "entity_id": self.entity_id,
            "provider": self.provider,
            "model_version": self.model_version,
            "dimensions": self.dimensions,
            "context_text": self.context_text,
            "context_hash": self.context_hash,
            "is_current": self.is_current,
            "generated_at": format_datetime(self.generated_at),
        }

    @classmethod
    def from_row(cls, row: dict, entity_kind: EntityKind) -> "EmbeddingRecord":
        owner_column = "node_id" if entity_kind is EntityKind.NODE else "edge_id"
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            entity_kind=entity_kind,
            entity_id=row[owner_column],
            provider=row.get("provider", ""),
            vector=np.frombuffer(row["vector"], dtype=np.float32).copy(),
            context_text=row.get("context_text", ""),
            context_hash=row.get("context_hash", ""),
            model_version=row.get("model_version"),
            is_current=bool(row.get("is_current", 1)),
            generated_at=_parse_datetime(row.get("generated_at")),
        )


@dataclass
class SnapshotRecord:
    """
    A point-in-time export of one tenant's graph.

    node_ids and edge_ids are always stored so later snapshots can diff
    against this one even when the payloads were omitted.
    """

    id: str
    tenant_id: str
    name: str
    description: str | None = None
    snapshot_type: SnapshotType = SnapshotType.FULL
    status: SnapshotStatus = SnapshotStatus.PENDING
    node_count: int = 0
    edge_count: int = 0
    cluster_count: int = 0
    metrics: dict | None = None
    nodes: list[dict] | None = None
    edges: list[dict] | None = None
    clusters: list[dict] | None = None
    node_ids: list[str] | None = None
    edge_ids: list[str] | None = None
    previous_snapshot_id: str | None = None
    diff: dict | None = None
    options: dict = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (SnapshotStatus.COMPLETE, SnapshotStatus.FAILED)

    def to_dict(self, include_payloads: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "snapshot_type": self.snapshot_type.value,
            "status": self.status.value,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "cluster_count": self.cluster_count,
            "metrics": self.metrics,
            "previous_snapshot_id": self.previous_snapshot_id,
            "diff": self.diff,
            "options": self.options,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
            "error_message": self.error_message,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "created_by": self.created_by,
        }
        if include_payloads:
            data["nodes"] = self.nodes
            data["edges"] = self.edges
            data["clusters"] = self.clusters
        return data

    @classmethod
    def from_row(cls, row: dict) -> "SnapshotRecord":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row.get("name", ""),
            description=row.get("description"),
            snapshot_type=SnapshotType(row.get("snapshot_type", "full")),
            status=SnapshotStatus(row.get("status", "pending")),
            node_count=row.get("node_count", 0) or 0,
            edge_count=row.get("edge_count", 0) or 0,
            cluster_count=row.get("cluster_count", 0) or 0,
            metrics=_parse_json(row.get("metrics"), None),
            nodes=_parse_json(row.get("nodes"), None),
            edges=_parse_json(row.get("edges"), None),
            clusters=_parse_json(row.get("clusters"), None),
            node_ids=_parse_json(row.get("node_ids"), None),
            edge_ids=_parse_json(row.get("edge_ids"), None),
            previous_snapshot_id=row.get("previous_snapshot_id"),
            diff=_parse_json(row.get("diff"), None),
            options=_parse_json(row.get("options"), {}),
            started_at=_parse_datetime(row.get("started_at")),
            completed_at=_parse_datetime(row.get("completed_at")),
            error_message=row.get("error_message"),
            created_at=_parse_datetime(row.get("created_at")),
            updated_at=_parse_datetime(row.get("updated_at")),
            created_by=row.get("created_by"),
        )


@dataclass
class AuditLogRecord:
    """Append-only record of one graph operation."""

    id: str
    tenant_id: str
    event_type: GraphEventType
    node_id: str | None = None
    edge_id: str | None = None
    snapshot_id: str | None = None
    actor_id: str | None = None
    actor_type: str | None = None
    changes: dict | None = None
    metadata: dict | None = None
    query: dict | None = None
    result_count: int | None = None
    execution_time_ms: float | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type.value,
            "node_id": self.node_id,
            "edge_id": self.edge_id,
            "snapshot_id": self.snapshot_id,
            "actor_id": self.actor_id,
            "actor_type": self.actor_type,
            "changes": self.changes,
            "metadata": self.metadata,
            "query": self.query,
            "result_count": self.result_count,
            "execution_time_ms": self.execution_time_ms,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict) -> "AuditLogRecord":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            event_type=GraphEventType(row["event_type"]),
            node_id=row.get("node_id"),
            edge_id=row.get("edge_id"),
            snapshot_id=row.get("snapshot_id"),
            actor_id=row.get("actor_id"),
            actor_type=row.get("actor_type"),
            changes=_parse_json(row.get("changes"), None),
            metadata=_parse_json(row.get("metadata"), None),
            query=_parse_json(row.get("query"), None),
            result_count=row.get("result_count"),
            execution_time_ms=row.get("execution_time_ms"),
            created_at=_parse_datetime(row.get("created_at")),
        )
