"""
CLI module for the Intelligence Graph service.

Provides command-line interface using Typer:
- init / stats: Create the database and inspect the graph
- add-node / add-edge / nodes: Manage entities
- traverse / path: Walk the graph
- compute-metrics / snapshot / audit: Analytics and history
- config: Configuration management
"""

from intel_graph.cli.main import app

__all__ = ["app"]
