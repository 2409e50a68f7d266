"""bimcontext rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from bimcontext.cli.errors import err_no_db
    console.print(err_no_db(".bimcontext.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".bimcontext.db") -> str:
    """No chunk store found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  bimcontext process MODEL.json --project ID"
    )


def err_config(message: str) -> str:
    """bimcontext.yaml, the global config or an env override is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix bimcontext.yaml (or ~/.bimcontext/config.yaml) and re-run."
    )


def err_model_file(path: str, reason: str) -> str:
    """The extracted model JSON is missing or unreadable."""
    return (
        f"[red]Error:[/] Cannot read model file '{path}': {reason}\n"
        '  Expected:  {"entities": [...], "entityIndex": {...}}  or a list of entities.'
    )


def err_project_exists(project_id: str) -> str:
    """process was run for a project that is already stored."""
    return (
        f"[red]Error:[/] Project '{project_id}' already exists.\n"
        f"  Run:  bimcontext process MODEL.json --project {project_id} --replace"
    )


def err_project_not_found(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{project_id}' not found.\n"
        "  Run:  bimcontext status  to list stored projects."
    )


def err_chunking_failed(message: str) -> str:
    """process_model raised ChunkingError; nothing was stored."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Check the model file, then re-run with --verbose for details."
    )


def err_storage(message: str) -> str:
    return (
        f"[red]Error:[/] Storage failure: {message}\n"
        "  Check the --db path, or rebuild with:  bimcontext rebuild PROJECT"
    )


def err_invalid_language(language: str) -> str:
    return (
        f"[red]Error:[/] Unsupported language '{language}'.\n"
        "  Use:  --language de  or  --language en"
    )


def err_invalid_manifest(project_id: str, error_count: int) -> str:
    """validate found integrity problems."""
    return (
        f"[red]Error:[/] Manifest for '{project_id}' has {error_count} problem(s).\n"
        f"  Run:  bimcontext rebuild {project_id}"
    )


def warn_chunking(warning: str) -> str:
    return f"[yellow]⚠[/] {warning}"
