"""
Graph query engine.

A query selects nodes in one of three ways, checked in order: semantic
similarity, traversal from a start node, or a filtered listing. Edges
between the selected nodes are attached afterwards and an optional
group-by aggregation is computed over the result.
"""

import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from intel_graph.audit import AuditLog
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import FilterExpressionError, QueryError
from intel_graph.graph_store.inputs import (
    GraphQuery,
    NodeFilter,
    QueryOperator,
    TraverseRequest,
    enum_values,
    parse_input,
)
from intel_graph.graph_store.traversal import TraversalEngine, TraversalPath
from intel_graph.storage import (
    Database,
    EdgeRecord,
    EdgeRepository,
    GraphEventType,
    NodeRecord,
    NodeRepository,
    NodeType,
)
from intel_graph.storage.repositories import escape_like
from intel_graph.utils.logging import get_logger
from intel_graph.utils.metrics import time_query

if TYPE_CHECKING:
    from intel_graph.embeddings.semantic import SemanticSearchAdapter

logger = get_logger(__name__)

# Node columns a filter may reference directly.
FILTER_COLUMNS = frozenset({
    "node_type",
    "label",
    "description",
    "external_id",
    "source_system",
    "source_table",
    "valid_from",
    "valid_to",
    "degree_centrality",
    "betweenness_centrality",
    "closeness_centrality",
    "pagerank_score",
    "cluster_id",
    "community_id",
    "confidence_score",
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
})
LIST_COLUMNS = frozenset({"tags", "categories"})
PROPERTY_PREFIX = "properties."

_PROPERTY_KEY = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")


@dataclass
class GraphQueryResult:
    mode: str
    nodes: list[NodeRecord]
    edges: list[EdgeRecord] = field(default_factory=list)
    paths: list[TraversalPath] = field(default_factory=list)
    similarities: dict[str, float] = field(default_factory=dict)
    aggregations: dict[str, dict[str, int]] | None = None
    execution_time_ms: float = 0.0

    @property
    def total_count(self) -> int:
        return len(self.nodes)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "paths": [path.to_dict() for path in self.paths],
            "similarities": self.similarities,
            "aggregations": self.aggregations,
            "total_count": self.total_count,
            "execution_time_ms": self.execution_time_ms,
        }


def _scalar(value: Any, node_filter: NodeFilter) -> Any:
    if isinstance(value, (dict, list)):
        raise FilterExpressionError(
            "Filter value must be a scalar",
            field=node_filter.field,
            operator=node_filter.operator,
        )
    if isinstance(value, bool):
        return int(value)
    return value


def _check_node_type(value: Any, node_filter: NodeFilter) -> None:
    values = value if isinstance(value, list) else [value]
    for item in values:
        if item is None:
            continue
        try:
            NodeType(item)
        except ValueError:
            raise FilterExpressionError(
                f"Unknown node type: {item}",
                field=node_filter.field,
                operator=node_filter.operator,
            ) from None


def _property_path(key: str, node_filter: NodeFilter) -> str:
    if not _PROPERTY_KEY.match(key):
        raise FilterExpressionError(
            f"Invalid property key: {key!r}",
            field=node_filter.field,
            operator=node_filter.operator,
        )
    return "$" + "".join(f'."{part}"' for part in key.split("."))


def compile_filter(node_filter: NodeFilter) -> tuple[str, list[Any]]:
    """
    Translate one filter into a SQL condition over the nodes table.

    Only allow-listed columns, the tag/category lists and
    ``properties.<key>`` are accepted; values are always bound.

    Raises:
        FilterExpressionError: For an unknown field or operator, or a
            value whose shape does not fit the operator
    """
    try:
        operator = QueryOperator(node_filter.operator)
    except ValueError:
        raise FilterExpressionError(
            f"Unknown filter operator: {node_filter.operator}",
            field=node_filter.field,
            operator=node_filter.operator,
        ) from None

    name, value = node_filter.field, node_filter.value

    if name in LIST_COLUMNS:
        return _compile_list_filter(name, operator, node_filter)

    if name in FILTER_COLUMNS:
        expr, expr_params = name, []
        if name == "node_type":
            _check_node_type(value, node_filter)
    elif name.startswith(PROPERTY_PREFIX):
        path = _property_path(name[len(PROPERTY_PREFIX):], node_filter)
        expr, expr_params = "json_extract(properties, ?)", [path]
    else:
        raise FilterExpressionError(
            f"Unknown filter field: {name}",
            field=name,
            operator=node_filter.operator,
        )

    if operator is QueryOperator.IN:
        if not isinstance(value, list):
            raise FilterExpressionError(
                "The 'in' operator needs a list value",
                field=name,
                operator=operator.value,
            )
        if not value:
            return "0", []
        items = [_scalar(item, node_filter) for item in value]
        return f"{expr} IN ({', '.join('?' * len(items))})", [*expr_params, *items]

    if operator is QueryOperator.CONTAINS:
        if not isinstance(value, str):
            raise FilterExpressionError(
                "The 'contains' operator needs a string value",
                field=name,
                operator=operator.value,
            )
        return f"{expr} LIKE ? ESCAPE '\\'", [*expr_params, f"%{escape_like(value)}%"]

    value = _scalar(value, node_filter)
    if operator is QueryOperator.EQUALS:
        if value is None:
            return f"{expr} IS NULL", expr_params
        return f"{expr} = ?", [*expr_params, value]
    if operator is QueryOperator.NOT_EQUALS:
        if value is None:
            return f"{expr} IS NOT NULL", expr_params
        return f"({expr} IS NULL OR {expr} != ?)", [*expr_params, *expr_params, value]

    if value is None:
        raise FilterExpressionError(
            f"The '{operator.value}' operator needs a number or string",
            field=name,
            operator=operator.value,
        )
    comparison = ">" if operator is QueryOperator.GREATER_THAN else "<"
    return f"{expr} {comparison} ?", [*expr_params, value]


def _compile_list_filter(
    name: str,
    operator: QueryOperator,
    node_filter: NodeFilter,
) -> tuple[str, list[Any]]:
    value = node_filter.value
    member = f"SELECT 1 FROM json_each(nodes.{name}) WHERE json_each.value"

    if operator in (QueryOperator.EQUALS, QueryOperator.CONTAINS, QueryOperator.NOT_EQUALS):
        if not isinstance(value, str):
            raise FilterExpressionError(
                f"Filtering {name} needs a string value",
                field=name,
                operator=operator.value,
            )
        negate = "NOT " if operator is QueryOperator.NOT_EQUALS else ""
        return f"{negate}EXISTS ({member} = ?)", [value]

    if operator is QueryOperator.IN:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise FilterExpressionError(
                f"The 'in' operator on {name} needs a list of strings",
                field=name,
                operator=operator.value,
            )
        if not value:
            return "0", []
        return f"EXISTS ({member} IN ({', '.join('?' * len(value))}))", list(value)

    raise FilterExpressionError(
        f"Operator '{operator.value}' is not supported on {name}",
        field=name,
        operator=operator.value,
    )


class QueryEngine:
    """
    Entry point for ``query_graph``.

    Example:
        >>> engine = QueryEngine(database, audit, traversal, semantic)
        >>> result = engine.query_graph(ctx, {
        ...     "node_types": ["competitor"],
        ...     "node_filters": [{"field": "properties.region", "operator": "equals", "value": "EU"}],
        ...     "group_by": "cluster_id",
        ... })
    """

    def __init__(
        self,
        database: Database,
        audit: AuditLog,
        traversal: TraversalEngine,
        semantic: "SemanticSearchAdapter | None" = None,
    ) -> None:
        self.nodes = NodeRepository(database)
        self.edges = EdgeRepository(database)
        self.audit = audit
        self.traversal = traversal
        self.semantic = semantic

    def query_graph(
        self,
        ctx: GraphContext,
        query: GraphQuery | Mapping[str, Any],
    ) -> GraphQueryResult:
        """
        Run a graph query and record it in the audit log.

        Raises:
            InvalidInputError: If the query fails validation
            FilterExpressionError: If a node filter is malformed
            NotFoundError: If a traversal start node is missing
        """
        query = parse_input(GraphQuery, query)
        started = time.perf_counter()

        with time_query():
            if query.semantic_query:
                result = self._semantic(ctx, query)
            elif query.start_node_id:
                result = self._traversal(ctx, query)
            else:
                result = self._filtered(ctx, query)

            node_ids = [node.id for node in result.nodes]
            edges = []
            if query.include_edges or query.group_by == "edge_type":
                edges = self.edges.among(ctx.tenant_id, node_ids)
            if query.include_edges:
                result.edges = edges
            if query.group_by:
                result.aggregations = {
                    query.group_by: self._aggregate(ctx, query.group_by, node_ids, edges)
                }

        result.execution_time_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Query ({result.mode}) returned {result.total_count} node(s) "
            f"in {result.execution_time_ms:.1f}ms"
        )
        self.audit.record(
            ctx,
            GraphEventType.QUERY_EXECUTED,
            query=query.model_dump(mode="json", exclude_none=True),
            result_count=result.total_count,
            execution_time_ms=result.execution_time_ms,
        )
        return result

    def _semantic(self, ctx: GraphContext, query: GraphQuery) -> GraphQueryResult:
        if self.semantic is None:
            raise QueryError("Semantic search is not configured")
        matches = self.semantic.run_search(
            ctx,
            query.semantic_query,
            node_types=enum_values(query.node_types),
            threshold=query.semantic_threshold,
            limit=query.limit,
        )
        return GraphQueryResult(
            mode="semantic",
            nodes=[match.node for match in matches],
            similarities={match.node.id: match.similarity for match in matches},
        )

    def _traversal(self, ctx: GraphContext, query: GraphQuery) -> GraphQueryResult:
        traversal = self.traversal.run_traversal(
            ctx,
            TraverseRequest(
                start_node_id=query.start_node_id,
                direction=query.direction,
                max_depth=query.max_depth,
                node_types=query.node_types,
                edge_types=query.edge_types,
                limit=query.limit,
            ),
        )
        return GraphQueryResult(mode="traversal", nodes=traversal.nodes, paths=traversal.paths)

    def _filtered(self, ctx: GraphContext, query: GraphQuery) -> GraphQueryResult:
        clauses: list[str] = []
        params: list[Any] = []

        node_types = enum_values(query.node_types)
        if node_types:
            clauses.append(f"node_type IN ({', '.join('?' * len(node_types))})")
            params.extend(node_types)
        for node_filter in query.node_filters:
            clause, clause_params = compile_filter(node_filter)
            clauses.append(clause)
            params.extend(clause_params)

        nodes = self.nodes.select_where(ctx.tenant_id, " AND ".join(clauses), params, query.limit)
        return GraphQueryResult(mode="filter", nodes=nodes)

    def _aggregate(
        self,
        ctx: GraphContext,
        group_by: str,
        node_ids: list[str],
        edges: list[EdgeRecord],
    ) -> dict[str, int]:
        if group_by != "edge_type":
            return self.nodes.group_counts(ctx.tenant_id, group_by, node_ids)
        counts: dict[str, int] = {}
        for edge in edges:
            counts[edge.edge_type.value] = counts.get(edge.edge_type.value, 0) + 1
        return dict(sorted(counts.items()))
