"""bimcontext status: stored projects, or one project's manifest statistics."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bimcontext.cli.errors import err_config, err_project_not_found
from bimcontext.config import ConfigError, load_config
from bimcontext.exceptions import ProjectNotFoundError
from bimcontext.manifest import ManifestManager, ManifestStats
from bimcontext.storage.sqlite_store import SqliteChunkStore

console = Console()


def status_cmd(
    project: Annotated[
        str | None,
        typer.Argument(help="Project id (omit to list all projects)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default from config)."),
    ] = None,
) -> None:
    """Show manifest statistics for PROJECT, or list all stored projects."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    db_path = db if db is not None else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  bimcontext process MODEL.json --project ID",
                title="[bold]Projects[/]",
                expand=False,
            )
        )
        return

    store = SqliteChunkStore.open(db_path)
    try:
        if project is None:
            _show_projects(store, db_path)
        else:
            stats = asyncio.run(ManifestManager(store).stats(project))
            _show_project_panel(stats)
    except ProjectNotFoundError as exc:
        console.print(err_project_not_found(project or ""))
        raise typer.Exit(1) from exc
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_projects(store: SqliteChunkStore, db_path: Path) -> None:
    async def _collect() -> list[tuple[str, str, int, int]]:
        rows = []
        for project_id, name in await store.list_projects():
            manifest = await store.load_manifest(project_id)
            chunks = manifest.total_chunks if manifest else 0
            tokens = manifest.total_tokens if manifest else 0
            rows.append((project_id, name, chunks, tokens))
        return rows

    rows = asyncio.run(_collect())
    if not rows:
        console.print(f"[dim]No projects stored in {db_path}.[/]")
        return

    table = Table(title=f"Projects in {db_path}", show_header=True)
    table.add_column("Project")
    table.add_column("Name")
    table.add_column("Chunks", justify="right")
    table.add_column("Tokens", justify="right")
    for project_id, name, chunks, tokens in rows:
        table.add_row(project_id, name or "[dim]-[/]", str(chunks), f"{tokens:,}")
    console.print(table)


def _show_project_panel(stats: ManifestStats) -> None:
    size_kb = stats.storage_bytes / 1024
    lines = [
        f"Project:   [bold]{stats.name}[/] ({stats.project_id})",
        f"Chunks:    [bold]{stats.total_chunks}[/]  |  "
        f"Entities: [bold]{stats.total_entities:,}[/]  |  "
        f"Tokens: [bold]{stats.total_tokens:,}[/]",
        f"Averages:  {stats.avg_tokens_per_chunk:.0f} tokens, "
        f"{stats.avg_entities_per_chunk:.1f} entities per chunk",
        f"Storage:   {size_kb:.1f} KB",
        f"Created:   {_format_time(stats.created_at)}",
        f"Updated:   {_format_time(stats.updated_at)}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Manifest[/]", expand=False))

    kinds = Table(title="Chunks by kind", show_header=True)
    kinds.add_column("Kind")
    kinds.add_column("Chunks", justify="right")
    for kind, count in sorted(stats.chunks_by_kind.items()):
        kinds.add_row(kind, str(count))
    console.print(kinds)

    indices = Table(title="Index keys", show_header=True)
    indices.add_column("Index")
    indices.add_column("Keys", justify="right")
    for name, size in stats.index_sizes.items():
        indices.add_row(name, str(size))
    console.print(indices)

    dist = stats.size_distribution
    console.print(
        f"[dim]Sizes: {dist['small']} small (<1000)  |  "
        f"{dist['medium']} medium  |  {dist['large']} large (>3000)[/]"
    )


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
