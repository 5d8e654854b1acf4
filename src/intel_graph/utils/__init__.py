"""
Utilities module for the Intelligence Graph service.

Provides logging setup and in-process metrics.
"""

from intel_graph.utils.logging import setup_logging, get_logger, get_logger_with_context
from intel_graph.utils.metrics import (
    Metrics,
    TimingStats,
    increment_embeddings_generated,
    increment_embeddings_skipped,
    increment_snapshot_outcome,
    time_query,
    time_traversal,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "get_logger_with_context",
    # Metrics
    "Metrics",
    "TimingStats",
    "increment_embeddings_generated",
    "increment_embeddings_skipped",
    "increment_snapshot_outcome",
    "time_query",
    "time_traversal",
]
