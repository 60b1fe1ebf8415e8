"""
Mind map CLI.

Run:
    cd backend
    python -m mindmap.tools.mindmap_cli generate --input items.json --cache-dir .mindmap_cache --seed 7
    python -m mindmap.tools.mindmap_cli show-cache --cache-dir .mindmap_cache --fingerprint <fp>

`items.json` holds a list of objects with id, title, text, tags, timestamp and
annotation fields.
"""
import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from mindmap.config import Settings, settings, validate_settings
from mindmap.dependencies import build_mindmap_service
from mindmap.models.mindmap import SourceItem, StoredLayout
from mindmap.services.layout_cache import LayoutCache
from mindmap.services.mindmap_service import GenerationState, MindMapService

console = Console()


def _load_items(path: Path) -> List[SourceItem]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("items", [])
    return [SourceItem(**entry) for entry in payload]


def _print_graph(service: MindMapService) -> None:
    nodes = Table(title=f"Nodes ({service.graph.total_nodes})")
    nodes.add_column("id", style="cyan")
    nodes.add_column("title")
    nodes.add_column("x", justify="right")
    nodes.add_column("y", justify="right")
    nodes.add_column("radius", justify="right")
    nodes.add_column("color")
    for node in service.graph.list_nodes():
        nodes.add_row(
            node.id,
            node.title,
            f"{node.x:.1f}",
            f"{node.y:.1f}",
            f"{node.radius:.1f}",
            node.color.value,
        )
    console.print(nodes)

    connections = Table(title=f"Connections ({service.graph.total_connections})")
    connections.add_column("source", style="cyan")
    connections.add_column("target", style="cyan")
    connections.add_column("type")
    connections.add_column("strength", justify="right")
    for connection in service.graph.list_connections():
        connections.add_row(
            connection.source_id,
            connection.target_id,
            connection.type.value,
            f"{connection.strength:.2f}",
        )
    console.print(connections)

    clusters = Table(title=f"Clusters ({len(service.graph.clusters)})")
    clusters.add_column("id", style="magenta")
    clusters.add_column("members")
    clusters.add_column("center", justify="right")
    clusters.add_column("radius", justify="right")
    clusters.add_column("importance", justify="right")
    for cluster in service.graph.clusters:
        clusters.add_row(
            cluster.id,
            ", ".join(cluster.node_ids),
            f"({cluster.center_x:.1f}, {cluster.center_y:.1f})",
            f"{cluster.radius:.1f}",
            f"{cluster.importance:.2f}",
        )
    console.print(clusters)


def _print_metrics(service: MindMapService) -> None:
    metrics = service.metrics
    cache_metrics = service.cache.metrics()
    table = Table(title="Metrics", show_header=False)
    table.add_column("name", style="dim")
    table.add_column("value", justify="right")
    table.add_row("layout time", f"{metrics.layout_time * 1000:.1f} ms")
    table.add_row("discovery time", f"{metrics.relationship_discovery_time * 1000:.1f} ms")
    table.add_row("iterations", str(metrics.iterations))
    table.add_row("converged", str(metrics.converged))
    table.add_row("cache hits", str(cache_metrics.hits))
    table.add_row("cache misses", str(cache_metrics.misses))
    console.print(table)


async def _generate(input_path: Path, cache_dir: Optional[str], seed: Optional[int]) -> int:
    config: Settings = settings
    if cache_dir is not None:
        config = settings.model_copy(update={"cache_dir": cache_dir})
    if not validate_settings(config):
        console.print("[red]invalid settings, see log output[/red]")
        return 2

    items = _load_items(input_path)
    service = build_mindmap_service(config, seed=seed)
    with console.status(f"Generating mind map for {len(items)} items..."):
        outcome = await service.generate(items)

    if outcome.state != GenerationState.CONVERGED:
        console.print(f"[yellow]generation ended with state {outcome.state.value}[/yellow]")
        return 1

    source = "cache" if outcome.from_cache else "pipeline"
    console.print(f"[green]fingerprint[/green] {outcome.fingerprint} ([dim]{source}[/dim])")
    _print_graph(service)
    if not outcome.from_cache:
        _print_metrics(service)
    return 0


def _show_cache(cache_dir: str, fingerprint: str) -> int:
    cache = LayoutCache(cache_dir=cache_dir, ttl_seconds=settings.cache_ttl_seconds)
    layout: Optional[StoredLayout] = cache.get(fingerprint)
    if layout is None:
        console.print(f"[red]no cached layout for {fingerprint}[/red]")
        return 1
    table = Table(title=f"Layout {fingerprint[:12]}")
    table.add_column("id", style="cyan")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    for node in layout.nodes:
        table.add_row(node.id, f"{node.x:.1f}", f"{node.y:.1f}")
    console.print(table)
    console.print(f"{len(layout.connections)} connections")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Mind map CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser("generate", help="Generate a mind map from items")
    generate_parser.add_argument("--input", required=True, help="JSON file with source items")
    generate_parser.add_argument("--cache-dir", default=None, help="Layout cache directory")
    generate_parser.add_argument("--seed", type=int, default=None, help="Seed for provisional placement")

    show_parser = subparsers.add_parser("show-cache", help="Print a cached layout")
    show_parser.add_argument("--cache-dir", required=True)
    show_parser.add_argument("--fingerprint", required=True)

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate":
        code = asyncio.run(_generate(Path(args.input), args.cache_dir, args.seed))
    else:
        code = _show_cache(args.cache_dir, args.fingerprint)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
