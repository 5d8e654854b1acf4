"""
Main CLI application for the Intelligence Graph service.

Provides an operator interface for:
- Creating the database and inspecting graph statistics
- Adding and listing nodes and edges
- Traversal, shortest paths and path explanations
- Metrics computation, snapshots and the audit trail
- Configuration management
"""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from intel_graph import __version__
from intel_graph.config import Settings, load_config
from intel_graph.core.context import GraphContext
from intel_graph.core.exceptions import IntelGraphError
from intel_graph.service import IntelligenceGraph
from intel_graph.storage import NodeRecord
from intel_graph.utils.logging import get_logger, setup_logging

app = typer.Typer(
    name="intel-graph",
    help="Intelligence Graph - typed entity graph with traversal, metrics and snapshots",
    add_completion=False,
    no_args_is_help=True,
)
snapshot_app = typer.Typer(help="Create and inspect graph snapshots", no_args_is_help=True)
config_app = typer.Typer(help="Configuration management", no_args_is_help=True)
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(config_app, name="config")

console = Console()
logger = get_logger(__name__)


@dataclass
class CLIState:
    config_file: Path | None = None
    tenant_id: str = "default"
    actor_id: str | None = None

    def settings(self) -> Settings:
        return load_config(self.config_file)

    def context(self) -> GraphContext:
        return GraphContext(tenant_id=self.tenant_id, actor_id=self.actor_id, actor_type="cli")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]Intelligence Graph[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        exists=True,
        dir_okay=False,
    ),
    tenant: str = typer.Option(
        "default",
        "--tenant",
        "-t",
        help="Tenant whose graph the command works on",
    ),
    actor: Optional[str] = typer.Option(
        None,
        "--actor",
        help="Actor id recorded on writes and audit entries",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Intelligence Graph - manage and query a tenant's entity graph.

    Use 'intel-graph --help' for command list.
    """
    state = CLIState(config_file=config_file, tenant_id=tenant, actor_id=actor)
    ctx.obj = state

    try:
        logging_settings = state.settings().logging
    except IntelGraphError:
        # Reported again by the command that needs the settings.
        return
    if verbose:
        logging_settings = logging_settings.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_settings)


@contextmanager
def _open_graph(state: CLIState) -> Iterator[IntelligenceGraph]:
    graph = IntelligenceGraph.from_settings(state.settings())
    try:
        yield graph
    finally:
        graph.close()


def _fail(e: Exception) -> None:
    console.print(f"[red]Error:[/red] {e}")
    if not isinstance(e, IntelGraphError):
        logger.exception("Command failed")
    raise typer.Exit(1)


def _shorten(text: str | None, width: int = 40) -> str:
    if not text:
        return ""
    return text[:width] + "..." if len(text) > width else text


def _node_table(title: str, nodes: list[NodeRecord], depths: dict[str, int] | None = None) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Label")
    if depths is not None:
        table.add_column("Depth", justify="right")
    table.add_column("Tags", style="dim")

    for node in nodes:
        row = [node.id, node.node_type.value, _shorten(node.label)]
        if depths is not None:
            row.append(str(depths.get(node.id, "")))
        row.append(", ".join(node.tags))
        table.add_row(*row)
    return table


@app.command()
def init(ctx: typer.Context) -> None:
    """
    Create the database and its schema.

    Example:
        intel-graph --config config.yaml init
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            path = graph.db.database_path
    except Exception as e:
        _fail(e)
    console.print(f"[green]✓[/green] Database ready: {path}")


@app.command()
def stats(ctx: typer.Context) -> None:
    """
    Show graph statistics for the tenant.

    Displays node and edge counts, type distributions and recent snapshots.
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            summary = graph.get_stats(state.context())
    except Exception as e:
        _fail(e)

    console.print(Panel(
        f"[bold]Intelligence Graph[/bold] v{__version__}\n"
        f"[dim]Tenant: {state.tenant_id}[/dim]",
        border_style="blue",
    ))

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Nodes", f"{summary['active_nodes']} active / {summary['total_nodes']} total")
    table.add_row("Edges", f"{summary['active_edges']} active / {summary['total_edges']} total")
    table.add_row("Snapshots", str(summary["total_snapshots"]))
    console.print(table)

    for heading, counts in (("Nodes by type", summary["nodes_by_type"]),
                            ("Edges by type", summary["edges_by_type"])):
        if not counts:
            continue
        console.print(f"\n[bold]{heading}:[/bold]")
        for name, count in sorted(counts.items(), key=lambda item: -item[1]):
            console.print(f"  {name}: [dim]{count}[/dim]")

    if summary["recent_snapshots"]:
        console.print("\n[bold]Recent snapshots:[/bold]")
        for snap in summary["recent_snapshots"]:
            console.print(f"  {snap['name']} [dim]({snap['status']}, {snap['created_at']})[/dim]")


@app.command("add-node")
def add_node(
    ctx: typer.Context,
    label: str = typer.Argument(..., help="Display label of the node"),
    node_type: str = typer.Option(..., "--type", help="Node type, e.g. organization"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Free-text description"),
    tags: Optional[list[str]] = typer.Option(None, "--tag", help="Tag to attach (repeatable)"),
) -> None:
    """
    Create a node.

    Example:
        intel-graph add-node "Acme Corp" --type organization --tag customer
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            node = graph.create_node(state.context(), {
                "node_type": node_type,
                "label": label,
                "description": description,
                "tags": tags or [],
            })
    except Exception as e:
        _fail(e)
    console.print(f"[green]✓[/green] Node created: {node.id}")


@app.command("add-edge")
def add_edge(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Source node id"),
    target: str = typer.Argument(..., help="Target node id"),
    edge_type: str = typer.Option(..., "--type", help="Edge type, e.g. related_to"),
    weight: float = typer.Option(1.0, "--weight", "-w", help="Edge weight", min=0.0),
    bidirectional: bool = typer.Option(False, "--bidirectional", help="Follow the edge both ways"),
) -> None:
    """Create an edge between two existing nodes."""
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            edge = graph.create_edge(state.context(), {
                "source_node_id": source,
                "target_node_id": target,
                "edge_type": edge_type,
                "weight": weight,
                "is_bidirectional": bidirectional,
            })
    except Exception as e:
        _fail(e)
    console.print(f"[green]✓[/green] Edge created: {edge.id}")


@app.command()
def nodes(
    ctx: typer.Context,
    node_type: Optional[list[str]] = typer.Option(None, "--type", help="Restrict to node type (repeatable)"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Substring of label or description"),
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive nodes"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results", min=1, max=100),
) -> None:
    """
    List nodes.

    Example:
        intel-graph nodes --type organization --search acme
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            page = graph.list_nodes(state.context(), {
                "node_types": node_type or None,
                "search": search,
                "is_active": None if include_inactive else True,
                "limit": limit,
            })
    except Exception as e:
        _fail(e)

    if not page.items:
        console.print("[yellow]No nodes found[/yellow]")
        return
    console.print(_node_table(f"Nodes ({len(page.items)} of {page.total})", page.items))


@app.command()
def traverse(
    ctx: typer.Context,
    start: str = typer.Argument(..., help="Start node id"),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", help="Maximum depth", min=1, max=10),
    direction: str = typer.Option("both", "--direction", help="outgoing, incoming or both"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum nodes visited", min=1, max=1000),
) -> None:
    """
    Breadth-first traversal from a node.

    Example:
        intel-graph traverse <node-id> --depth 2 --direction outgoing
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            result = graph.traverse(state.context(), {
                "start_node_id": start,
                "max_depth": depth,
                "direction": direction,
                "limit": limit,
            })
    except Exception as e:
        _fail(e)

    title = f"Reached from {result.start_node.label} ({len(result.nodes)} nodes)"
    console.print(_node_table(title, result.nodes, result.depths))
    if result.truncated:
        console.print("[yellow]Result truncated at the visit limit[/yellow]")
    console.print(f"[dim]{result.execution_time_ms:.1f} ms[/dim]")


@app.command()
def path(
    ctx: typer.Context,
    start: str = typer.Argument(..., help="Start node id"),
    end: str = typer.Argument(..., help="End node id"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", help="Hop limit", min=1, max=10),
    explain: bool = typer.Option(False, "--explain", help="Ask the reasoning model to explain the path"),
) -> None:
    """
    Find the shortest path between two nodes.

    Example:
        intel-graph path <from-id> <to-id> --explain
    """
    state: CLIState = ctx.obj
    request = {"start_node_id": start, "end_node_id": end, "max_depth": max_depth}
    explanation = None
    try:
        with _open_graph(state) as graph:
            if explain:
                explanation = graph.explain_path(state.context(), request)
                result = explanation.path if explanation else None
            else:
                result = graph.find_shortest_path(state.context(), request)
    except Exception as e:
        _fail(e)

    if result is None:
        console.print("[yellow]No path found[/yellow]")
        return

    hops = " → ".join(node.label for node in result.nodes)
    console.print(Panel(
        f"{hops}\n\n[dim]Length: {result.length} | Total weight: {result.total_weight:g}[/dim]",
        title="Shortest path",
        border_style="green",
    ))
    if explanation is not None and explanation.explanation:
        console.print(Panel(
            f"{explanation.explanation}\n\n[dim]Confidence: {explanation.confidence:.2f}[/dim]",
            title="Explanation",
            border_style="blue",
        ))


@app.command("compute-metrics")
def compute_metrics(
    ctx: typer.Context,
    clusters: bool = typer.Option(True, "--clusters/--no-clusters", help="Assign connected-component clusters"),
) -> None:
    """Recompute centrality scores and clusters for the tenant."""
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            with console.status("[cyan]Computing metrics..."):
                outcome = graph.compute_metrics(state.context(), {"compute_clusters": clusters})
    except Exception as e:
        _fail(e)

    metrics = outcome.metrics
    console.print(Panel(
        f"[green]✓ Metrics computed[/green]\n\n"
        f"Nodes updated: [bold]{outcome.nodes_updated}[/bold]\n"
        f"Clusters: [bold]{outcome.clusters_identified}[/bold]\n"
        f"Density: [bold]{metrics['density']:.4f}[/bold]\n"
        f"Average degree: [bold]{metrics['avg_degree']:.2f}[/bold]",
        title="Metrics",
        border_style="green",
    ))


@app.command()
def audit(
    ctx: typer.Context,
    event: Optional[str] = typer.Option(None, "--event", "-e", help="Only this event type"),
    node_id: Optional[str] = typer.Option(None, "--node", help="Only entries for this node"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum entries", min=1, max=100),
) -> None:
    """Show the tenant's audit trail, newest first."""
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            entries, total = graph.list_audit_logs(
                state.context(), event_type=event, node_id=node_id, limit=limit
            )
    except Exception as e:
        _fail(e)

    if not entries:
        console.print("[yellow]No audit entries[/yellow]")
        return

    table = Table(title=f"Audit log ({len(entries)} of {total})", show_header=True)
    table.add_column("When", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Node", style="dim")
    table.add_column("Edge", style="dim")
    table.add_column("Actor")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S") if entry.created_at else "N/A",
            entry.event_type.value,
            entry.node_id or "",
            entry.edge_id or "",
            entry.actor_id or "",
        )
    console.print(table)


@snapshot_app.command("create")
def snapshot_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name"),
    snapshot_type: str = typer.Option("full", "--type", help="full, incremental or metrics_only"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Snapshot description"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for generation to finish"),
) -> None:
    """
    Queue a snapshot of the tenant's graph.

    Example:
        intel-graph snapshot create "Weekly review" --type incremental
    """
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            snapshot = graph.create_snapshot(state.context(), {
                "name": name,
                "description": description,
                "snapshot_type": snapshot_type,
            })
            if wait:
                with console.status("[cyan]Generating snapshot..."):
                    snapshot = graph.wait_for_snapshot(state.context(), snapshot.id)
    except Exception as e:
        _fail(e)

    style = {"complete": "green", "failed": "red"}.get(snapshot.status.value, "yellow")
    console.print(f"[{style}]{snapshot.status.value}[/{style}] Snapshot {snapshot.id}")
    if snapshot.error_message:
        console.print(f"[red]{snapshot.error_message}[/red]")


@snapshot_app.command("list")
def snapshot_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", help="Only snapshots in this status"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results", min=1, max=100),
) -> None:
    """List snapshots, newest first."""
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            page = graph.list_snapshots(state.context(), status=status, limit=limit)
    except Exception as e:
        _fail(e)

    if not page.items:
        console.print("[yellow]No snapshots found[/yellow]")
        return

    table = Table(title=f"Snapshots ({len(page.items)} of {page.total})", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Nodes", justify="right")
    table.add_column("Edges", justify="right")
    for snap in page.items:
        table.add_row(
            snap.id,
            _shorten(snap.name),
            snap.snapshot_type.value,
            snap.status.value,
            str(snap.node_count),
            str(snap.edge_count),
        )
    console.print(table)


@snapshot_app.command("show")
def snapshot_show(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot id"),
) -> None:
    """Show one snapshot's status, counts and diff."""
    state: CLIState = ctx.obj
    try:
        with _open_graph(state) as graph:
            snapshot = graph.get_snapshot(state.context(), snapshot_id)
    except Exception as e:
        _fail(e)

    if snapshot is None:
        console.print(f"[red]Error:[/red] Snapshot not found: {snapshot_id}")
        raise typer.Exit(1)

    lines = [
        f"[bold]{snapshot.name}[/bold] [dim]({snapshot.snapshot_type.value})[/dim]",
        f"Status: {snapshot.status.value}",
        f"Nodes: {snapshot.node_count} | Edges: {snapshot.edge_count} | Clusters: {snapshot.cluster_count}",
    ]
    if snapshot.diff:
        diff = snapshot.diff
        lines.append(
            f"Diff: +{diff['nodes_added']}/-{diff['nodes_removed']} nodes, "
            f"+{diff['edges_added']}/-{diff['edges_removed']} edges"
        )
    if snapshot.error_message:
        lines.append(f"[red]{snapshot.error_message}[/red]")
    console.print(Panel("\n".join(lines), title=snapshot.id, border_style="blue"))


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration."""
    state: CLIState = ctx.obj
    try:
        settings = state.settings()
    except Exception as e:
        _fail(e)

    console.print(Panel("[bold]Current Configuration[/bold]", border_style="blue"))
    for section, values in settings.model_dump().items():
        console.print(f"\n[bold cyan]{section}:[/bold cyan]")
        for key, value in values.items():
            console.print(f"  {key}: [dim]{value}[/dim]")


@config_app.command("init")
def config_init(
    output: Path = typer.Option(
        Path("config.yaml"),
        "--output",
        "-o",
        help="Output path for config file",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file with every default filled in."""
    import yaml

    if output.exists() and not force:
        if not typer.confirm(f"File {output} exists. Overwrite?"):
            raise typer.Exit(0)

    config_dict = Settings().model_dump(mode="json")
    with open(output, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]✓[/green] Configuration saved to: {output}")


if __name__ == "__main__":
    app()
