"""bimcontext validate / rebuild: manifest integrity commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from bimcontext.cli.errors import (
    err_config,
    err_invalid_manifest,
    err_no_db,
    err_project_not_found,
    err_storage,
)
from bimcontext.config import ConfigError, load_config
from bimcontext.exceptions import ProjectNotFoundError, StorageError
from bimcontext.manifest import ManifestManager
from bimcontext.storage.sqlite_store import SqliteChunkStore

console = Console()


def _open_store(db: Path | None) -> SqliteChunkStore:
    """Open the configured (or given) store; exit 1 if it does not exist."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    db_path = db if db is not None else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return SqliteChunkStore.open(db_path)


def validate_cmd(
    project: Annotated[str, typer.Argument(help="Project id.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default from config)."),
    ] = None,
) -> None:
    """Check a project's manifest against its stored chunks and indices."""
    store = _open_store(db)
    try:
        result = asyncio.run(ManifestManager(store).validate(project))
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        store.close()

    if result.valid:
        console.print(f"[green]✓[/] Manifest for [bold]{project}[/] is valid")
        return

    for error in result.errors:
        console.print(f"  [red]✗[/] {escape(error)}")
    console.print(err_invalid_manifest(project, len(result.errors)))
    raise typer.Exit(1)


def rebuild_cmd(
    project: Annotated[str, typer.Argument(help="Project id.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default from config)."),
    ] = None,
) -> None:
    """Regenerate a project's manifest and indices from its stored chunks."""
    store = _open_store(db)
    try:
        manifest = asyncio.run(ManifestManager(store).rebuild(project))
    except ProjectNotFoundError as exc:
        console.print(err_project_not_found(project))
        raise typer.Exit(1) from exc
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        store.close()

    console.print(
        f"[green]✓[/] Rebuilt manifest for [bold]{project}[/]: "
        f"{manifest.total_chunks} chunks, {manifest.total_tokens:,} tokens"
    )
