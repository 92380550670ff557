"""
Rendering of search pages as markdown or JSON.

Markdown output is meant for an agent reading results: each entry ends
with a locator line (line range, archive path, file size and line count)
so the agent can decide whether to open the archive.
"""

import json
import logging
import math
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence

from .types import (
    Exchange,
    MultiConceptResult,
    PaginationMeta,
    SearchResult,
    utc_date,
)

logger = logging.getLogger(__name__)

FORMATS = ("markdown", "json")

# Summaries at or above this length are left out of markdown output
SUMMARY_DISPLAY_LIMIT = 300


def load_summary(archive_path: str) -> Optional[str]:
    """
    Conversation summary stored beside an archive, if any.

    ``/x/conv.jsonl`` has its summary in ``/x/conv-summary.txt``. A missing
    or unreadable summary is not an error.
    """
    summary_path = Path(archive_path.replace(".jsonl", "-summary.txt", 1))
    try:
        return summary_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read summary %s: %s", summary_path, e)
        return None


def file_size_kb(path: str) -> float:
    """Size in KB rounded to one decimal; 0 if the file can't be read."""
    try:
        size = Path(path).stat().st_size
    except OSError:
        return 0
    return math.floor(size / 1024 * 10 + 0.5) / 10


def count_lines(path: str) -> int:
    """Number of non-blank lines; 0 if the file can't be read."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return sum(1 for line in f if line.strip())
    except OSError:
        return 0


def _percent(value: float) -> int:
    """Similarity as a whole percentage, halves rounded up."""
    return math.floor(value * 100 + 0.5)


def _format_kb(kb: float) -> str:
    return str(int(kb)) if float(kb).is_integer() else str(kb)


def _tool_summary(exchange: Exchange) -> Optional[str]:
    if not exchange.tool_calls:
        return None
    counts = Counter(tc.tool_name for tc in exchange.tool_calls)
    return ", ".join(f"{name}({n})" for name, n in counts.items())


def _locator(exchange: Exchange) -> str:
    path = exchange.archive_path
    return (
        f"   Lines {exchange.line_start}-{exchange.line_end} in {path} "
        f"({_format_kb(file_size_kb(path))}KB, {count_lines(path)} lines)\n\n"
    )


def _showing(pagination: PaginationMeta, returned: int) -> str:
    first = pagination.offset + 1
    last = pagination.offset + returned
    return f"Showing {first}-{last} of {pagination.total} results\n\n"


def _more(pagination: PaginationMeta) -> str:
    if not pagination.has_more:
        return ""
    return (
        "---\n**More results available.** "
        f"Use offset: {pagination.next_offset} to see next page.\n"
    )


def _check_format(fmt: str) -> None:
    if fmt not in FORMATS:
        raise ValueError(f"Unknown format {fmt!r}, expected one of: {', '.join(FORMATS)}")


def format_results(
    results: Sequence[SearchResult],
    pagination: PaginationMeta,
    fmt: str = "markdown",
) -> str:
    """Render a single-query page."""
    _check_format(fmt)
    if fmt == "json":
        return json.dumps({
            "results": [r.to_dict() for r in results],
            "pagination": pagination.to_dict(),
        }, indent=2)

    if not results:
        return f"No results found.\n\nShowing 0 of {pagination.total} results"

    out = ["## Search Results\n\n", _showing(pagination, len(results))]
    for position, result in enumerate(results, start=pagination.offset + 1):
        exchange = result.exchange
        header = f"{position}. [{exchange.project}, {utc_date(exchange.timestamp)}]"
        if result.similarity is not None:
            header += f" - {_percent(result.similarity)}% match"
        out.append(header + "\n")

        if result.summary and len(result.summary) < SUMMARY_DISPLAY_LIMIT:
            out.append(f"   {result.summary}\n")
        out.append(f'   "{result.snippet}"\n')

        tools = _tool_summary(exchange)
        if tools:
            out.append(f"   Tools: {tools}\n")
        out.append(_locator(exchange))

    out.append(_more(pagination))
    return "".join(out)


def format_multi_concept_results(
    results: Sequence[MultiConceptResult],
    concepts: Sequence[str],
    pagination: PaginationMeta,
    fmt: str = "markdown",
) -> str:
    """Render a multi-concept page with per-concept scores."""
    _check_format(fmt)
    if fmt == "json":
        return json.dumps({
            "results": [r.to_dict() for r in results],
            "concepts": list(concepts),
            "pagination": pagination.to_dict(),
        }, indent=2)

    if not results:
        return (
            f"No conversations found matching all concepts: {', '.join(concepts)}"
            f"\n\nShowing 0 of {pagination.total} results"
        )

    out = [
        "## Multi-Concept Search Results\n\n",
        f"Concepts: [{' + '.join(concepts)}]\n",
        _showing(pagination, len(results)),
    ]
    for position, result in enumerate(results, start=pagination.offset + 1):
        exchange = result.exchange
        out.append(
            f"{position}. [{exchange.project}, {utc_date(exchange.timestamp)}]"
            f" - {_percent(result.average_similarity)}% avg match\n"
        )
        scores = ", ".join(
            f"{concept}: {_percent(sim)}%"
            for concept, sim in zip(concepts, result.concept_similarities)
        )
        out.append(f"   Concepts: {scores}\n")
        out.append(f'   "{result.snippet}"\n')

        tools = _tool_summary(exchange)
        if tools:
            out.append(f"   Tools: {tools}\n")
        out.append(_locator(exchange))

    out.append(_more(pagination))
    return "".join(out)
