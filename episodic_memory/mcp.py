"""
MCP stdio server for episodic memory search.

Exposes EpisodicMemory search as an MCP tool so local AI agents can look
up earlier conversations.

Usage:
    episodic-memory mcp                                       # stdio server (via CLI)
    claude mcp add episodic-memory -- episodic-memory mcp     # Claude Code integration

All EpisodicMemory calls are serialized through a single asyncio.Lock.
"""

import asyncio
from typing import Annotated, Literal, Optional, Union

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import EpisodicMemory
from .errors import EpisodicMemoryError
from .formatting import format_multi_concept_results, format_results

MIN_QUERY_LENGTH = 2
MIN_CONCEPTS = 2
MAX_CONCEPTS = 5
MAX_LIMIT = 50

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "episodic-memory",
    instructions=(
        "Search indexed past conversations by meaning or exact text. "
        "Pass a list of concepts to find conversations that cover all of them."
    ),
)

_memory: Optional[EpisodicMemory] = None
_lock = asyncio.Lock()


def _get_memory() -> EpisodicMemory:
    """Lazy-init EpisodicMemory with default config.

    Must be called inside ``async with _lock``.
    """
    global _memory
    if _memory is None:
        _memory = EpisodicMemory()
    return _memory


def _check_query(query: Union[str, list[str]]) -> Optional[str]:
    """Error message for an unacceptable query, or None."""
    if isinstance(query, str):
        if len(query) < MIN_QUERY_LENGTH:
            return f"Query must be at least {MIN_QUERY_LENGTH} characters"
        return None
    if len(query) < MIN_CONCEPTS:
        return f"Must provide at least {MIN_CONCEPTS} concepts for multi-concept search"
    if len(query) > MAX_CONCEPTS:
        return f"Cannot search more than {MAX_CONCEPTS} concepts at once"
    for concept in query:
        if len(concept) < MIN_QUERY_LENGTH:
            return f"Each concept must be at least {MIN_QUERY_LENGTH} characters"
    return None


_READ_ONLY = ToolAnnotations(
    title="Search Episodic Memory",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Search indexed conversations by semantic similarity or exact text. "
        "Pass a string for a single-concept search (mode: vector, text or both). "
        "Pass a list of 2-5 strings to find conversations matching ALL concepts "
        "(mode is ignored). Results include project, date, similarity, a snippet "
        "of the user's message, tools used, and the archive path with line range. "
        "Use offset to page through results."
    ),
    annotations=_READ_ONLY,
)
async def episodic_memory_search(
    query: Annotated[Union[str, list[str]], Field(
        description="Search text, or a list of 2-5 concepts for multi-concept AND search.",
    )],
    mode: Annotated[Literal["vector", "text", "both"], Field(
        description='"vector" for semantic similarity, "text" for exact matching, "both" combined.',
    )] = "both",
    limit: Annotated[int, Field(
        description="Maximum results to return (1-50).",
        ge=1, le=MAX_LIMIT,
    )] = 10,
    offset: Annotated[int, Field(
        description="Number of results to skip, for pagination.",
        ge=0,
    )] = 0,
    after: Annotated[Optional[str], Field(
        description="Only conversations on or after this date (YYYY-MM-DD).",
    )] = None,
    before: Annotated[Optional[str], Field(
        description="Only conversations on or before this date (YYYY-MM-DD).",
    )] = None,
    response_format: Annotated[Literal["markdown", "json"], Field(
        description='"markdown" for reading or "json" for machine processing.',
    )] = "markdown",
) -> str:
    """Search past conversations."""
    problem = _check_query(query)
    if problem is None and not 1 <= limit <= MAX_LIMIT:
        problem = f"Limit must be between 1 and {MAX_LIMIT}"
    if problem is not None:
        return f"Error: {problem}"

    async with _lock:
        memory = _get_memory()
        try:
            if isinstance(query, str):
                page = memory.search(
                    query, mode=mode, limit=limit, offset=offset,
                    after=after, before=before,
                )
                return format_results(page.results, page.pagination, response_format)

            concepts = list(query)
            page = memory.search_multiple_concepts(
                concepts, limit=limit, offset=offset, after=after, before=before,
            )
            return format_multi_concept_results(
                page.results, concepts, page.pagination, response_format,
            )
        except (EpisodicMemoryError, ValueError, OSError) as e:
            return f"Error: {e}"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import os
    import signal
    # The stdin reader shields readline from cancellation, so the first
    # Ctrl+C would otherwise be ignored.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
