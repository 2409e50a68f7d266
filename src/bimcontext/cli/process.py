"""bimcontext process: chunk an extracted model and store it as a project.

Usage:
  bimcontext process model.json --project tower-a
  bimcontext process model.json --project tower-a --name "Tower A" --replace
"""

from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from bimcontext.chunking.base import SizeOptions
from bimcontext.chunking.smart_chunker import ProcessingResult, SmartChunker
from bimcontext.cli.errors import (
    err_chunking_failed,
    err_config,
    err_model_file,
    err_project_exists,
    err_storage,
    warn_chunking,
)
from bimcontext.config import ConfigError, load_config, validate_config
from bimcontext.exceptions import ChunkingError, ProjectExistsError, StorageError
from bimcontext.manifest import ManifestManager
from bimcontext.models import ModelInput, load_model_file
from bimcontext.storage.base import ChunkStore
from bimcontext.storage.cache import CachedChunkStore
from bimcontext.storage.sqlite_store import SqliteChunkStore

console = Console()


def process_cmd(
    model_file: Annotated[
        Path,
        typer.Argument(help="Extracted model JSON (entities + entityIndex)."),
    ],
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project id to store the chunks under."),
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", help="Project display name (default: file stem)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default from config)."),
    ] = None,
    target_tokens: Annotated[
        int | None,
        typer.Option("--target-tokens", help="Chunk fill target in estimated tokens."),
    ] = None,
    max_tokens: Annotated[
        int | None,
        typer.Option("--max-tokens", help="Split chunks above this many tokens."),
    ] = None,
    replace: Annotated[
        bool,
        typer.Option("--replace", help="Overwrite an existing project."),
    ] = False,
) -> None:
    """Chunk a model and persist its chunks, manifest and indices."""
    try:
        cfg = load_config()
        if target_tokens is not None:
            cfg.chunking.target_token_size = target_tokens
        if max_tokens is not None:
            cfg.chunking.max_token_size = max_tokens
        validate_config(cfg)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    if not model_file.is_file():
        console.print(err_model_file(str(model_file), "file not found"))
        raise typer.Exit(1)
    try:
        model = load_model_file(model_file)
    except (ValueError, TypeError) as exc:
        console.print(err_model_file(str(model_file), str(exc)))
        raise typer.Exit(1) from exc

    file_metadata = {"file_name": model_file.name, "file_size": model_file.stat().st_size}
    db_path = db if db is not None else Path(cfg.storage.db_path)

    console.print(f"\n[bold]→ {model_file.name}[/]  ({len(model.entities)} entities)")
    store = SqliteChunkStore.open(db_path)
    cached = CachedChunkStore(store, cfg.cache.capacity, cfg.cache.ttl_seconds)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Chunking…", total=None)
            result = asyncio.run(
                store_model(
                    cached,
                    project,
                    name or model_file.stem,
                    model,
                    cfg.chunking.size_options(),
                    file_metadata,
                    replace=replace,
                )
            )
    except ProjectExistsError as exc:
        console.print(err_project_exists(project))
        raise typer.Exit(1) from exc
    except ChunkingError as exc:
        console.print(err_chunking_failed(str(exc)))
        raise typer.Exit(1) from exc
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        store.close()

    for warning in result.warnings:
        console.print(warn_chunking(warning))
    _show_summary(result)
    console.print(
        f"  [green]✓[/] Stored {len(result.chunks)} chunks for [bold]{project}[/] "
        f"in {db_path} ({result.processing_time_ms:.0f} ms)"
    )


async def store_model(
    store: ChunkStore,
    project_id: str,
    name: str,
    model: ModelInput,
    options: SizeOptions,
    file_metadata: dict[str, Any] | None = None,
    *,
    replace: bool = False,
) -> ProcessingResult:
    """Chunk *model* and write chunks, manifest and indices to *store*.

    Raises:
        ProjectExistsError: If the project is stored and *replace* is false.
        ChunkingError: If chunking fails; nothing is written in that case.
    """
    if await store.project_exists(project_id) and not replace:
        raise ProjectExistsError(project_id)

    result = await SmartChunker(options).process_model(project_id, model, name, file_metadata)

    if await store.project_exists(project_id):
        await store.delete_project(project_id)
    await store.create_project(project_id, name)
    await store.save_chunks(project_id, result.chunks)
    await ManifestManager(store).save(result.manifest)
    return result


def _show_summary(result: ProcessingResult) -> None:
    manifest = result.manifest
    kinds = Counter(c.kind for c in result.chunks)
    tokens: Counter[str] = Counter()
    for chunk in result.chunks:
        tokens[chunk.kind] += chunk.token_count

    table = Table(title=f"{manifest.name} ({manifest.project_id})", show_header=True)
    table.add_column("Kind")
    table.add_column("Chunks", justify="right")
    table.add_column("Tokens", justify="right")
    for kind, count in kinds.most_common():
        table.add_row(kind, str(count), f"{tokens[kind]:,}")
    table.add_row("[bold]total[/]", f"[bold]{manifest.total_chunks}[/]", f"[bold]{manifest.total_tokens:,}[/]")
    console.print(table)
