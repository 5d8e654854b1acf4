"""
Configuration module for the Intelligence Graph service.

Provides Pydantic-based settings management with YAML file support
and environment variable overrides.
"""

from intel_graph.config.settings import (
    Settings,
    StorageSettings,
    EmbeddingSettings,
    ReasoningSettings,
    TraversalSettings,
    SnapshotSettings,
    LoggingSettings,
)
from intel_graph.config.loader import load_config, get_settings, reset_settings

__all__ = [
    "Settings",
    "StorageSettings",
    "EmbeddingSettings",
    "ReasoningSettings",
    "TraversalSettings",
    "SnapshotSettings",
    "LoggingSettings",
    "load_config",
    "get_settings",
    "reset_settings",
]
