"""
Intelligence Graph - a multi-tenant entity-relationship graph service.

This package stores typed nodes and edges per tenant and provides
traversal, filtered and semantic queries, node merging, graph metrics,
background snapshots, path explanations and an audit trail.
"""

__version__ = "0.1.0"

from intel_graph.config import Settings, load_config
from intel_graph.utils.logging import setup_logging, get_logger
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import IntelGraphError
from intel_graph.service import IntelligenceGraph

__author__ = "Intelligence Graph Team"

__all__ = [
    "Settings",
    "load_config",
    "setup_logging",
    "get_logger",
    "GraphContext",
    "IntelGraphError",
    "IntelligenceGraph",
]
