"""
CLI interface for episodic memory search.

Usage:
    episodic-memory search "React Router authentication errors"
    episodic-memory search --text a1b2c3d4e5f6
    episodic-memory search --after 2025-09-01 "refactoring"
    episodic-memory search "React Router" "authentication" "JWT"
"""

import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import EpisodicMemory
from .errors import EpisodicMemoryError, log_exception
from .formatting import format_multi_concept_results, format_results
from .logging_config import configure_quiet_mode, enable_debug_mode

# Configure quiet mode by default (suppress verbose library output)
# Set EPISODIC_MEMORY_VERBOSE=1 to enable debug mode via environment
if os.environ.get("EPISODIC_MEMORY_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"episodic-memory {version('episodic-memory')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="episodic-memory",
    help="Search archived conversations by meaning or exact text.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
):
    """Search archived conversations by meaning or exact text."""


DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        envvar="EPISODIC_MEMORY_DB_PATH",
        help="Path to the conversation database",
    ),
]


@app.command()
def search(
    query: Annotated[list[str], typer.Argument(
        help="Search text; several values run a multi-concept search",
    )],
    text: Annotated[bool, typer.Option(
        "--text",
        help="Exact string matching (for git SHAs, error codes)",
    )] = False,
    both: Annotated[bool, typer.Option(
        "--both",
        help="Combine vector and text search",
    )] = False,
    after: Annotated[Optional[str], typer.Option(
        "--after",
        help="Only conversations on or after YYYY-MM-DD",
    )] = None,
    before: Annotated[Optional[str], typer.Option(
        "--before",
        help="Only conversations on or before YYYY-MM-DD",
    )] = None,
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum results to show",
    )] = 10,
    offset: Annotated[int, typer.Option(
        "--offset",
        help="Number of results to skip",
    )] = 0,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
    db: DbOption = None,
):
    """
    Search indexed conversations.

    One query searches by semantic similarity (default), exact text
    (--text) or both (--both). Several queries find conversations that
    match all of them; --text and --both are ignored then.
    """
    if text and both:
        typer.echo("Error: --text and --both are mutually exclusive", err=True)
        raise typer.Exit(1)
    mode = "text" if text else "both" if both else "vector"
    fmt = "json" if output_json else "markdown"

    try:
        with EpisodicMemory(db_path=db) as memory:
            if len(query) == 1:
                page = memory.search(
                    query[0], mode=mode, limit=limit, offset=offset,
                    after=after, before=before,
                )
                output = format_results(page.results, page.pagination, fmt)
            else:
                page = memory.search_multiple_concepts(
                    query, limit=limit, offset=offset, after=after, before=before,
                )
                output = format_multi_concept_results(
                    page.results, page.concepts, page.pagination, fmt,
                )
    except EpisodicMemoryError as e:
        log_exception(e, context="episodic-memory search")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(output)


@app.command()
def mcp(
    db: DbOption = None,
):
    """Start MCP stdio server for AI agent integration."""
    if db is not None:
        os.environ["EPISODIC_MEMORY_DB_PATH"] = str(db)
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="episodic-memory CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
