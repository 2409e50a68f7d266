"""bimcontext query: select and assemble the LLM context for one question.

The assembled Markdown goes to stdout so it can be piped into a prompt;
the metrics line is printed after it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from bimcontext.cli.errors import (
    err_config,
    err_invalid_language,
    err_no_db,
    err_project_not_found,
    err_storage,
)
from bimcontext.config import LANGUAGES, ConfigError, load_config
from bimcontext.exceptions import ProjectNotFoundError, StorageError
from bimcontext.selection.assembler import FormattingOptions
from bimcontext.selection.selector import ContextSelector, SelectionResult
from bimcontext.storage.cache import CachedChunkStore
from bimcontext.storage.sqlite_store import SqliteChunkStore

console = Console()


def query_cmd(
    project: Annotated[str, typer.Argument(help="Project id.")],
    question: Annotated[str, typer.Argument(help="Natural-language question (de or en).")],
    max_tokens: Annotated[
        int | None,
        typer.Option("--max-tokens", help="Total token limit (default from config)."),
    ] = None,
    language: Annotated[
        str | None,
        typer.Option("--language", "-l", help="Output language: de or en."),
    ] = None,
    compact: Annotated[
        bool | None,
        typer.Option(
            "--compact/--full",
            help="Force compact or full rendering (default: compact above the configured threshold).",
        ),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chunk store (default from config)."),
    ] = None,
) -> None:
    """Print the assembled context for QUESTION, then a metrics line."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    if language is not None:
        if language.lower() not in LANGUAGES:
            console.print(err_invalid_language(language))
            raise typer.Exit(1)
        cfg.selection.language = language.lower()

    db_path = db if db is not None else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    options = None
    if compact is not None:
        options = FormattingOptions(compact_mode=compact, language=cfg.selection.language)

    store = SqliteChunkStore.open(db_path)
    cached = CachedChunkStore(store, cfg.cache.capacity, cfg.cache.ttl_seconds)
    try:
        selector = ContextSelector(cached, cfg.selection, cfg.cache)
        result = asyncio.run(selector.select_chunks(project, question, max_tokens, options))
    except ProjectNotFoundError as exc:
        console.print(err_project_not_found(project))
        raise typer.Exit(1) from exc
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        store.close()

    typer.echo(result.context.render())
    console.print(_metrics_line(result))


def _metrics_line(result: SelectionResult) -> str:
    m = result.metrics
    return (
        f"[dim]{len(result.chunks)} of {result.candidate_count} candidates  |  "
        f"{result.total_tokens:,} tokens  |  intent: {result.intent.kind} "
        f"({result.intent.confidence:.2f})  |  coverage {m.coverage}%  |  "
        f"{result.processing_time_ms:.0f} ms[/]\n"
        f"[dim]{escape(result.reason)}[/]"
    )
