"""
Data types for episodic memory search.

Everything here is transient: built per query, discarded after formatting.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


SNIPPET_LENGTH = 200

_WHITESPACE_RE = re.compile(r"\s+")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical form written by the indexer (``...Z``) as well as
    ``+00:00`` offsets and naive timestamps, which are taken as UTC.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_date(ts: str) -> str:
    """UTC calendar date (YYYY-MM-DD) of a stored timestamp.

    Falls back to the first ten characters for unparseable input.
    """
    if not ts:
        return ""
    try:
        return parse_utc_timestamp(ts).strftime("%Y-%m-%d")
    except (ValueError, OverflowError):
        return ts[:10]


def make_snippet(text: str) -> str:
    """First 200 characters of a message, whitespace collapsed."""
    snippet = _WHITESPACE_RE.sub(" ", text[:SNIPPET_LENGTH]).strip()
    if len(text) > SNIPPET_LENGTH:
        snippet += "..."
    return snippet


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation recorded during an exchange."""
    id: str
    exchange_id: str
    tool_name: str
    tool_input: Any = None
    tool_result: Optional[str] = None
    is_error: bool = False
    timestamp: str = ""

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "exchangeId": self.exchange_id,
            "toolName": self.tool_name,
            "isError": self.is_error,
            "timestamp": self.timestamp,
        }
        if self.tool_input is not None:
            d["toolInput"] = self.tool_input
        if self.tool_result is not None:
            d["toolResult"] = self.tool_result
        return d


@dataclass(frozen=True)
class Exchange:
    """
    One archived user/assistant turn.

    Owned by the indexing pipeline; the search engine only reads it.

    Attributes:
        id: Stable unique identifier
        project: Project namespace the conversation belongs to
        timestamp: ISO-8601 timestamp of the exchange
        user_message: Text of the user turn
        assistant_message: Text of the assistant turn
        archive_path: Path of the archived conversation file
        line_start: First line of the exchange in the archive (1-indexed)
        line_end: Last line of the exchange in the archive (>= line_start)
        tool_calls: Tool invocations, in order
    """
    id: str
    project: str
    timestamp: str
    user_message: str
    assistant_message: str
    archive_path: str
    line_start: int
    line_end: int
    tool_calls: tuple[ToolCall, ...] = ()

    def to_dict(self) -> dict:
        """Wire shape used in JSON output."""
        d = {
            "id": self.id,
            "project": self.project,
            "timestamp": self.timestamp,
            "userMessage": self.user_message,
            "assistantMessage": self.assistant_message,
            "archivePath": self.archive_path,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
        }
        if self.tool_calls:
            d["toolCalls"] = [tc.to_dict() for tc in self.tool_calls]
        return d


@dataclass(frozen=True)
class TimeRange:
    """Inclusive timestamp bounds (YYYY-MM-DD strings, already validated)."""
    after: Optional[str] = None
    before: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.after or self.before)


@dataclass(frozen=True)
class SearchResult:
    """
    A single-query search hit.

    ``similarity`` is ``1 - distance`` and is None when no vector search
    contributed. ``summary`` is display-only enrichment and never leaves
    the process in JSON output.
    """
    exchange: Exchange
    snippet: str
    similarity: Optional[float] = None
    summary: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"exchange": self.exchange.to_dict()}
        if self.similarity is not None:
            d["similarity"] = self.similarity
        d["snippet"] = self.snippet
        return d


@dataclass(frozen=True)
class MultiConceptResult:
    """A conversation matching every concept of a multi-concept search."""
    exchange: Exchange
    snippet: str
    concept_similarities: list[float]
    average_similarity: float

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange.to_dict(),
            "snippet": self.snippet,
            "conceptSimilarities": list(self.concept_similarities),
            "averageSimilarity": self.average_similarity,
        }


@dataclass(frozen=True)
class PaginationMeta:
    """Pagination window for a result page.

    ``has_more`` is ``offset + returned < total``; ``next_offset`` is set
    only when ``has_more`` and is ``offset + limit``.
    """
    total: int
    limit: int
    offset: int
    has_more: bool
    next_offset: Optional[int] = None

    def to_dict(self) -> dict:
        d = {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "hasMore": self.has_more,
        }
        if self.next_offset is not None:
            d["nextOffset"] = self.next_offset
        return d


@dataclass
class SearchPage:
    """Results of a single-query search plus pagination."""
    results: list[SearchResult]
    pagination: PaginationMeta

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "pagination": self.pagination.to_dict(),
        }


@dataclass
class MultiConceptPage:
    """Results of a multi-concept search plus pagination."""
    results: list[MultiConceptResult]
    pagination: PaginationMeta
    concepts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "concepts": list(self.concepts),
            "pagination": self.pagination.to_dict(),
        }
