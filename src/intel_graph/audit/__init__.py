"""Append-only audit log of graph operations."""

from intel_graph.audit.recorder import AuditLog

__all__ = ["AuditLog"]
