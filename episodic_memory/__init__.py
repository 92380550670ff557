"""
Episodic memory: search archived conversations by meaning or exact text.

Quick start:
    from episodic_memory import EpisodicMemory, format_results

    with EpisodicMemory() as memory:
        page = memory.search("react router auth", mode="both", limit=5)
        print(format_results(page.results, page.pagination))
"""

from .api import EpisodicMemory
from .errors import EmbeddingError, EpisodicMemoryError, StoreError, ValidationError
from .formatting import format_multi_concept_results, format_results
from .types import (
    Exchange,
    MultiConceptPage,
    MultiConceptResult,
    PaginationMeta,
    SearchPage,
    SearchResult,
    ToolCall,
)

__version__ = "1.0.0"

__all__ = [
    "EpisodicMemory",
    "EpisodicMemoryError",
    "EmbeddingError",
    "Exchange",
    "MultiConceptPage",
    "MultiConceptResult",
    "PaginationMeta",
    "SearchPage",
    "SearchResult",
    "StoreError",
    "ToolCall",
    "ValidationError",
    "format_multi_concept_results",
    "format_results",
]
