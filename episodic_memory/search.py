"""
Search and pagination over archived exchanges.

Two retrieval paths with different pagination models meet here:

- The vector index only answers "top k nearest". To serve the page at
  ``offset`` we request ``k = limit + offset`` neighbours and slice off the
  first ``offset`` locally, so per-page cost grows with the offset.
- Substring search runs against the relational table, which has real
  LIMIT/OFFSET and an exact COUNT.

``paginate`` derives the same pagination metadata for every mode, and for
multi-concept search after ``intersect_concepts``.

Note on ``total``: in ``both`` mode and in multi-concept search, ``total``
is the size of the fetched (deduplicated or intersected) window, not a
corpus-wide count. A conversation matching every concept can be missed
when the over-fetch didn't surface it for some concept.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from .errors import EmbeddingError, ValidationError
from .providers.base import EmbeddingProvider
from .types import (
    Exchange,
    MultiConceptResult,
    PaginationMeta,
    TimeRange,
    make_snippet,
)

logger = logging.getLogger(__name__)

SEARCH_MODES = ("vector", "text", "both")

# Distance assigned to text-only hits in combined mode (similarity 1.0)
TEXT_MATCH_DISTANCE = 0.0

_ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}\Z")


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

def validate_date_param(value: str, param: str) -> str:
    """
    Check that a date filter is a real YYYY-MM-DD calendar date.

    Raises:
        ValidationError: Naming ``param`` and the offending value
    """
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        raise ValidationError(param, value, "Expected YYYY-MM-DD format (e.g., 2025-10-01)")
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(param, value, "Not a valid calendar date.") from None
    return value


def build_time_range(after: Optional[str] = None, before: Optional[str] = None) -> TimeRange:
    """Validate date filters and combine them into a TimeRange."""
    if after is not None:
        validate_date_param(after, "after")
    if before is not None:
        validate_date_param(before, "before")
    return TimeRange(after=after, before=before)


def validate_window(limit: int, offset: int) -> None:
    """Reject non-positive limits and negative offsets."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit", limit, "Must be a positive integer.")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset", offset, "Must be a non-negative integer.")


def validate_mode(mode: str) -> str:
    if mode not in SEARCH_MODES:
        raise ValidationError("mode", mode, f"Expected one of: {', '.join(SEARCH_MODES)}")
    return mode


# -----------------------------------------------------------------------------
# Retrieval
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Hit:
    """A retrieved exchange and its distance (None for text-only hits)."""
    exchange: Exchange
    distance: Optional[float] = None

    @property
    def similarity(self) -> Optional[float]:
        if self.distance is None:
            return None
        return 1.0 - self.distance


class VectorRetriever:
    """
    Nearest-neighbour retrieval: embed the query, ask the index for top k.

    The index has no offset; see ``window_size``.
    """

    def __init__(self, store, embedder: EmbeddingProvider):
        self._store = store
        self._embedder = embedder

    @staticmethod
    def window_size(limit: int, offset: int) -> int:
        """Neighbours needed to serve ``[offset, offset + limit)``."""
        return limit + offset

    def embed(self, text: str) -> list[float]:
        """
        Query embedding.

        Raises:
            EmbeddingError: If the provider fails
        """
        try:
            return self._embedder.embed(text)
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embedding for {text!r}: {e}") from e

    def retrieve(self, query: str, k: int, time_range: Optional[TimeRange] = None) -> list[Hit]:
        """Top ``k`` hits for ``query``, ascending by distance."""
        embedding = self.embed(query)
        rows = self._store.vector_query(embedding, k, time_range)
        logger.debug("Vector retrieval for %r: k=%d, got %d", query, k, len(rows))
        return [Hit(exchange, distance) for exchange, distance in rows]


class TextRetriever:
    """Case-insensitive substring retrieval, newest first."""

    def __init__(self, store):
        self._store = store

    def page(
        self,
        query: str,
        time_range: Optional[TimeRange],
        limit: int,
        offset: int,
    ) -> tuple[list[Hit], int]:
        """
        One page of matches plus the exact total.

        Returns:
            (hits, total)
        """
        total = self._store.text_count(query, time_range)
        rows = self._store.text_query(query, time_range, limit, offset)
        logger.debug("Text page for %r: total=%d, got %d", query, total, len(rows))
        return [Hit(exchange) for exchange in rows], total

    def fetch(self, query: str, time_range: Optional[TimeRange], n: int) -> list[Hit]:
        """First ``n`` matches, for merging with vector hits."""
        rows = self._store.text_query(query, time_range, n, 0)
        return [Hit(exchange, TEXT_MATCH_DISTANCE) for exchange in rows]


# -----------------------------------------------------------------------------
# Merging and pagination
# -----------------------------------------------------------------------------

def merge_results(vector_hits: Sequence[Hit], text_hits: Sequence[Hit]) -> list[Hit]:
    """
    Union of vector and text candidates, deduplicated by exchange id.

    Vector hits keep their order and win on duplicates (they carry a real
    distance); unseen text hits are appended in their own order.
    """
    merged = list(vector_hits)
    seen = {hit.exchange.id for hit in merged}
    for hit in text_hits:
        if hit.exchange.id in seen:
            continue
        seen.add(hit.exchange.id)
        merged.append(hit)
    return merged


def paginate(total: int, limit: int, offset: int, returned: int) -> PaginationMeta:
    """Pagination metadata for a page of ``returned`` results."""
    has_more = offset + returned < total
    return PaginationMeta(
        total=total,
        limit=limit,
        offset=offset,
        has_more=has_more,
        next_offset=offset + limit if has_more else None,
    )


# -----------------------------------------------------------------------------
# Multi-concept intersection
# -----------------------------------------------------------------------------

def concept_window_size(limit: int, offset: int, overfetch: int) -> int:
    """Per-concept neighbours requested for a multi-concept page.

    The factor is a heuristic so that intersections are non-trivial; it is
    not a guarantee that every qualifying conversation is seen.
    """
    return limit * overfetch + offset


def intersect_concepts(per_concept_hits: Sequence[Sequence[Hit]]) -> list[MultiConceptResult]:
    """
    Conversations present in every concept's candidate list.

    Hits are grouped by archive path, so the concepts may be matched by
    different exchanges of the same conversation. For each concept the
    first (nearest) hit in the conversation supplies the similarity. The
    first hit seen for a conversation supplies the displayed exchange.

    Returns:
        Results sorted by average similarity, highest first (stable)
    """
    n_concepts = len(per_concept_hits)
    if n_concepts == 0:
        return []

    # archive_path -> (first hit, {concept index -> similarity})
    conversations: dict[str, tuple[Hit, dict[int, float]]] = {}
    for concept_index, hits in enumerate(per_concept_hits):
        for hit in hits:
            key = hit.exchange.archive_path
            if key not in conversations:
                conversations[key] = (hit, {})
            similarities = conversations[key][1]
            if concept_index not in similarities:
                similarities[concept_index] = hit.similarity or 0.0

    results = []
    for first_hit, similarities in conversations.values():
        if len(similarities) != n_concepts:
            continue
        concept_similarities = [similarities[i] for i in range(n_concepts)]
        results.append(MultiConceptResult(
            exchange=first_hit.exchange,
            snippet=make_snippet(first_hit.exchange.user_message),
            concept_similarities=concept_similarities,
            average_similarity=sum(concept_similarities) / n_concepts,
        ))

    results.sort(key=lambda r: r.average_similarity, reverse=True)
    return results
