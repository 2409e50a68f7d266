"""bimcontext CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from bimcontext.cli.manifest import rebuild_cmd, validate_cmd
from bimcontext.cli.process import process_cmd
from bimcontext.cli.query import query_cmd
from bimcontext.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("bimcontext")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"bimcontext {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="bimcontext",
    help=(
        "bimcontext: BIM model chunking and LLM context selection.\n\n"
        "  bimcontext process  Chunk an extracted model and store it as a project.\n"
        "  bimcontext query    Select and assemble the context for one question."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Log warnings and errors only."),
    ] = False,
) -> None:
    """bimcontext: BIM model chunking and LLM context selection."""
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


app.command("process")(process_cmd)
app.command("query")(query_cmd)
app.command("validate")(validate_cmd)
app.command("rebuild")(rebuild_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed bimcontext version."""
    typer.echo(f"bimcontext {_installed_version()}")


if __name__ == "__main__":
    app()
