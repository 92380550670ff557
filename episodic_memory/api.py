"""
Core API for episodic memory search.

- search(): one query by vector similarity, substring match, or both
- search_multiple_concepts(): conversations matching every concept
- index_exchanges(): embed and store exchanges (indexing helper)

Each call opens the exchange store, uses it, and closes it before
returning, whether the call succeeds or fails. Searches open it read-only;
only index_exchanges() opens it for writing.
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import MemoryConfig, get_config_dir, load_or_create_config
from .errors import EmbeddingError
from .formatting import load_summary
from .providers.base import EmbeddingProvider, exchange_embedding_text, get_registry
from .search import (
    Hit,
    TextRetriever,
    VectorRetriever,
    build_time_range,
    concept_window_size,
    intersect_concepts,
    merge_results,
    paginate,
    validate_mode,
    validate_window,
)
from .types import (
    Exchange,
    MultiConceptPage,
    SearchPage,
    SearchResult,
    make_snippet,
)

logger = logging.getLogger(__name__)


class EpisodicMemory:
    """
    Search over archived conversation exchanges.

    Example:
        with EpisodicMemory() as memory:
            page = memory.search("react router auth", mode="both", limit=5)
            more = memory.search("react router auth", mode="both", limit=5,
                                 offset=page.pagination.next_offset or 0)
    """

    def __init__(
        self,
        config_dir: Optional[str | Path] = None,
        *,
        config: Optional[MemoryConfig] = None,
        db_path: Optional[str | Path] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> None:
        """
        Args:
            config_dir: Directory holding episodic-memory.toml. Uses the
                default config directory if not specified.
            config: Pre-loaded config (skips filesystem config discovery).
            db_path: Exchange database path (overrides config and env).
            embedding_provider: Injected provider (skips registry creation).
        """
        if config is not None:
            self._config = config
        else:
            resolved = Path(config_dir).resolve() if config_dir is not None else get_config_dir()
            self._config = load_or_create_config(resolved)

        self._db_path = Path(db_path) if db_path is not None else self._config.resolved_db_path()

        # Created on first use so text-only searches never load a model
        self._embedding_provider: Optional[EmbeddingProvider] = embedding_provider
        self._provider_init_lock = threading.Lock()

    @property
    def config(self) -> MemoryConfig:
        """Public access to configuration."""
        return self._config

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_embedding_provider(self) -> EmbeddingProvider:
        """
        Get embedding provider, creating it lazily on first use.

        Raises:
            EmbeddingError: If the configured provider can't be created
        """
        if self._embedding_provider is not None:
            return self._embedding_provider

        with self._provider_init_lock:
            if self._embedding_provider is not None:
                return self._embedding_provider
            embedding = self._config.embedding
            try:
                self._embedding_provider = get_registry().create_embedding(
                    embedding.name, embedding.params,
                )
            except Exception as e:
                raise EmbeddingError(
                    f"Cannot create embedding provider {embedding.name!r}: {e}"
                ) from e
        return self._embedding_provider

    def _open_store(self, writable: bool = False):
        """Open the exchange store for the duration of one call (read-only unless indexing)."""
        from .store import ExchangeStore
        return ExchangeStore(self._db_path, writable=writable)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        mode: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> SearchPage:
        """
        Search exchanges for one query.

        Args:
            query: Search text
            mode: "vector" (semantic), "text" (substring) or "both"
            limit: Page size
            offset: Number of results to skip
            after: Only exchanges at or after this date (YYYY-MM-DD)
            before: Only exchanges at or before this date (YYYY-MM-DD)

        Raises:
            ValidationError: Bad mode, window or date filter (nothing is queried)
            EmbeddingError: Query embedding failed
            StoreError: The store couldn't be opened or queried
        """
        mode = validate_mode(mode or self._config.search.default_mode)
        if limit is None:
            limit = self._config.search.default_limit
        validate_window(limit, offset)
        time_range = build_time_range(after, before)

        with self._open_store() as store:
            if mode == "text":
                page, total = TextRetriever(store).page(query, time_range, limit, offset)
            else:
                k = VectorRetriever.window_size(limit, offset)
                retriever = VectorRetriever(store, self._get_embedding_provider())
                window = retriever.retrieve(query, k, time_range)
                if mode == "both":
                    text_hits = TextRetriever(store).fetch(query, time_range, k)
                    window = merge_results(window, text_hits)
                total = len(window)
                page = window[offset:offset + limit]

            tool_calls = store.tool_calls_for(hit.exchange.id for hit in page)

        results = [self._to_search_result(hit, tool_calls) for hit in page]
        pagination = paginate(total, limit, offset, len(results))
        logger.debug(
            "search mode=%s limit=%d offset=%d total=%d returned=%d",
            mode, limit, offset, total, len(results),
        )
        return SearchPage(results=results, pagination=pagination)

    def search_multiple_concepts(
        self,
        concepts: Sequence[str],
        *,
        limit: Optional[int] = None,
        offset: int = 0,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> MultiConceptPage:
        """
        Find conversations that semantically match every concept.

        Each concept is retrieved independently and concurrently with an
        enlarged window; conversations present in all candidate lists are
        ranked by mean similarity. Any failed concept fails the search.

        Raises:
            ValidationError: Bad window or date filter (nothing is queried)
            EmbeddingError: A concept embedding failed
            StoreError: The store couldn't be opened or queried
        """
        if limit is None:
            limit = self._config.search.default_limit
        validate_window(limit, offset)
        time_range = build_time_range(after, before)
        concepts = list(concepts)

        if not concepts:
            return MultiConceptPage(
                results=[], pagination=paginate(0, limit, offset, 0), concepts=[],
            )

        k = concept_window_size(limit, offset, self._config.search.concept_overfetch)
        embedder = self._get_embedding_provider()

        with self._open_store() as store:
            retriever = VectorRetriever(store, embedder)
            with ThreadPoolExecutor(
                max_workers=len(concepts), thread_name_prefix="concept",
            ) as pool:
                futures = [
                    pool.submit(retriever.retrieve, concept, k, time_range)
                    for concept in concepts
                ]
                wait(futures)
            for concept, future in zip(concepts, futures):
                if future.exception() is not None:
                    logger.warning("Concept retrieval failed for %r: %s", concept, future.exception())
            per_concept = [future.result() for future in futures]

            matched = intersect_concepts(per_concept)
            page = matched[offset:offset + limit]
            tool_calls = store.tool_calls_for(r.exchange.id for r in page)

        results = [
            dataclasses.replace(r, exchange=self._with_tool_calls(r.exchange, tool_calls))
            for r in page
        ]
        pagination = paginate(len(matched), limit, offset, len(results))
        logger.debug(
            "multi-concept search concepts=%d k=%d matched=%d returned=%d",
            len(concepts), k, len(matched), len(results),
        )
        return MultiConceptPage(results=results, pagination=pagination, concepts=concepts)

    @staticmethod
    def _with_tool_calls(exchange: Exchange, tool_calls: dict) -> Exchange:
        calls = tool_calls.get(exchange.id)
        if not calls:
            return exchange
        return dataclasses.replace(exchange, tool_calls=tuple(calls))

    def _to_search_result(self, hit: Hit, tool_calls: dict) -> SearchResult:
        exchange = self._with_tool_calls(hit.exchange, tool_calls)
        return SearchResult(
            exchange=exchange,
            snippet=make_snippet(exchange.user_message),
            similarity=hit.similarity,
            summary=load_summary(exchange.archive_path),
        )

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    def index_exchanges(self, exchanges: Iterable[Exchange]) -> int:
        """
        Embed and store exchanges, replacing existing ones with the same id.

        Returns:
            Number of exchanges stored
        """
        exchanges = list(exchanges)
        if not exchanges:
            return 0
        texts = [exchange_embedding_text(e.user_message, e.assistant_message) for e in exchanges]
        try:
            embeddings = self._get_embedding_provider().embed_batch(texts)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to embed {len(texts)} exchanges: {e}") from e

        with self._open_store(writable=True) as store:
            for exchange, embedding in zip(exchanges, embeddings):
                store.insert_exchange(exchange, embedding)
        logger.info("Indexed %d exchanges into %s", len(exchanges), self._db_path)
        return len(exchanges)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the embedding provider."""
        self._embedding_provider = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
