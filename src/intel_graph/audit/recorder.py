"""
Audit log recorder.

Every graph operation reports what it did here after its own write has
committed. Recording is best effort: a failed audit insert is logged and
never reaches the caller, and nothing in the service reads the log to
make decisions.
"""

import uuid
from typing import Any

from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import InvalidInputError
from intel_graph.storage.models import AuditLogRecord, GraphEventType, utc_now
from intel_graph.storage.repositories import AuditLogRepository
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


class AuditLog:
    """
    Injected recorder for graph events.

    Example:
        >>> audit = AuditLog(AuditLogRepository(db))
        >>> audit.record(ctx, GraphEventType.NODE_CREATED, node_id=node.id)
        >>> entries, total = audit.list_entries(ctx, node_id=node.id)
    """

    def __init__(self, repository: AuditLogRepository) -> None:
        self.repository = repository

    def record(
        self,
        ctx: GraphContext,
        event_type: GraphEventType,
        *,
        node_id: str | None = None,
        edge_id: str | None = None,
        snapshot_id: str | None = None,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
        result_count: int | None = None,
        execution_time_ms: float | None = None,
    ) -> AuditLogRecord | None:
        """
        Append one entry.

        Returns:
            The stored entry, or None if it could not be written
        """
        entry = AuditLogRecord(
            id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_id,
            event_type=event_type,
            node_id=node_id,
            edge_id=edge_id,
            snapshot_id=snapshot_id,
            actor_id=ctx.actor_id,
            actor_type=ctx.actor_type,
            changes=changes,
            metadata=metadata,
            query=query,
            result_count=result_count,
            execution_time_ms=round(execution_time_ms, 3) if execution_time_ms is not None else None,
            created_at=utc_now(),
        )
        try:
            self.repository.insert(entry)
        except Exception as e:
            logger.warning(
                f"Failed to record audit entry {event_type.value} "
                f"for tenant {ctx.tenant_id}: {e}"
            )
            return None
        return entry

    def list_entries(
        self,
        ctx: GraphContext,
        event_type: GraphEventType | str | None = None,
        node_id: str | None = None,
        edge_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogRecord], int]:
        """Entries for the tenant, newest first, with the unpaginated total."""
        if isinstance(event_type, str):
            try:
                event_type = GraphEventType(event_type)
            except ValueError as e:
                raise InvalidInputError(
                    f"Unknown event type: {event_type}", field="event_type"
                ) from e
        return self.repository.list(
            ctx.tenant_id,
            event_type=event_type,
            node_id=node_id,
            edge_id=edge_id,
            limit=max(1, min(limit, 100)),
            offset=max(0, offset),
        )
