"""
Shared pytest fixtures for episodic memory tests.

Provides mock providers and an in-memory exchange store to avoid loading
ML models or the sqlite-vec extension during testing.
"""

import hashlib
import threading
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest

from episodic_memory.types import Exchange, TimeRange, ToolCall

EMBEDDING_DIMENSION = 384


def vector(*components: tuple[int, float]) -> list[float]:
    """384-dim vector with the given (index, value) components set."""
    v = [0.0] * EMBEDDING_DIMENSION
    for index, value in components:
        v[index] = value
    return v


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Texts registered in ``vectors`` embed to that vector; anything else gets
    a vector derived from its hash. Texts in ``fail_on`` raise. When
    ``barrier`` is set, every embed waits on it before returning.
    """

    dimension = EMBEDDING_DIMENSION
    model_name = "mock-model"

    def __init__(self, vectors: Optional[dict[str, list[float]]] = None):
        self.vectors = dict(vectors or {})
        self.fail_on: set[str] = set()
        self.embedded: list[str] = []
        self.batch_calls = 0
        self.barrier: Optional[threading.Barrier] = None
        self._lock = threading.Lock()

    @property
    def embed_calls(self) -> int:
        return len(self.embedded)

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.embedded.append(text)
        if self.barrier is not None:
            self.barrier.wait()
        if text in self.fail_on:
            raise RuntimeError(f"model failure for {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        h = hashlib.md5(text.encode()).hexdigest()
        embedding = [int(h[i:i+2], 16) / 255.0 for i in range(0, 32, 2)]
        return (embedding * 24)[:self.dimension]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class MockExchangeStore:
    """
    In-memory stand-in for ExchangeStore.

    Distance is ``1 - dot(query, stored)`` so tests control similarity by
    choosing vectors. The same instance is handed out on every open, and
    opens/closes are counted to check the per-call store lifetime.
    """

    def __init__(self):
        self._exchanges: dict[str, Exchange] = {}
        self._embeddings: dict[str, list[float]] = {}
        self._tool_calls: dict[str, list[ToolCall]] = {}
        self.opened = 0
        self.closed = 0
        self.db_paths: list[Path] = []
        self.writable_opens = 0
        self.vector_queries: list[int] = []
        self.fail_queries = False

    def open(self, db_path: Path, writable: bool = False) -> "MockExchangeStore":
        self.opened += 1
        self.writable_opens += int(writable)
        self.db_paths.append(db_path)
        return self

    @property
    def is_open(self) -> bool:
        return self.opened > self.closed

    def _check(self):
        if self.fail_queries:
            from episodic_memory.errors import StoreError
            raise StoreError("Exchange store query failed: disk I/O error")

    @staticmethod
    def _in_range(exchange: Exchange, time_range: Optional[TimeRange]) -> bool:
        if time_range is None:
            return True
        if time_range.after and exchange.timestamp < time_range.after:
            return False
        if time_range.before and exchange.timestamp > time_range.before:
            return False
        return True

    def _text_matches(self, pattern: str, time_range: Optional[TimeRange]) -> list[Exchange]:
        needle = pattern.lower()
        matches = [
            e for e in self._exchanges.values()
            if self._in_range(e, time_range)
            and (needle in e.user_message.lower() or needle in e.assistant_message.lower())
        ]
        matches.sort(key=lambda e: e.id)
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches

    def vector_query(self, embedding, k, time_range=None):
        self._check()
        self.vector_queries.append(k)
        if k <= 0:
            return []
        scored = []
        for id, exchange in self._exchanges.items():
            if not self._in_range(exchange, time_range):
                continue
            stored = self._embeddings[id]
            distance = 1.0 - sum(a * b for a, b in zip(embedding, stored))
            scored.append((exchange, distance))
        scored.sort(key=lambda pair: pair[1])
        return scored[:k]

    def text_query(self, pattern, time_range=None, limit=10, offset=0):
        self._check()
        return self._text_matches(pattern, time_range)[offset:offset + limit]

    def text_count(self, pattern, time_range=None):
        self._check()
        return len(self._text_matches(pattern, time_range))

    def tool_calls_for(self, exchange_ids):
        self._check()
        return {
            id: list(self._tool_calls[id])
            for id in dict.fromkeys(exchange_ids)
            if self._tool_calls.get(id)
        }

    def count(self) -> int:
        return len(self._exchanges)

    def insert_exchange(self, exchange: Exchange, embedding: list[float]) -> None:
        if len(embedding) != EMBEDDING_DIMENSION:
            raise ValueError(f"Embedding must have {EMBEDDING_DIMENSION} dimensions")
        # Rows come back without tool calls, as from the real store
        self._tool_calls[exchange.id] = list(exchange.tool_calls)
        self._exchanges[exchange.id] = Exchange(
            id=exchange.id,
            project=exchange.project,
            timestamp=exchange.timestamp,
            user_message=exchange.user_message,
            assistant_message=exchange.assistant_message,
            archive_path=exchange.archive_path,
            line_start=exchange.line_start,
            line_end=exchange.line_end,
        )
        self._embeddings[exchange.id] = list(embedding)

    def delete_exchange(self, id: str) -> bool:
        self._tool_calls.pop(id, None)
        self._embeddings.pop(id, None)
        return self._exchanges.pop(id, None) is not None

    def close(self) -> None:
        self.closed += 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _make_exchange(
    id: str,
    *,
    project: str = "my-project",
    timestamp: str = "2025-10-01T12:00:00.000Z",
    user_message: Optional[str] = None,
    assistant_message: str = "Sure, here is how.",
    archive_path: Optional[str] = None,
    line_start: int = 1,
    line_end: int = 10,
    tool_calls: tuple = (),
) -> Exchange:
    return Exchange(
        id=id,
        project=project,
        timestamp=timestamp,
        user_message=user_message if user_message is not None else f"Question {id}",
        assistant_message=assistant_message,
        archive_path=archive_path or f"/archive/{project}/{id}.jsonl",
        line_start=line_start,
        line_end=line_end,
        tool_calls=tool_calls,
    )


@pytest.fixture
def make_exchange():
    """Factory for test exchanges with sensible defaults."""
    return _make_exchange


@pytest.fixture
def make_vector():
    """Factory for sparse 384-dim vectors: make_vector((0, 0.8), (1, 0.6))."""
    return vector


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def mock_store():
    """Create a fresh, empty MockExchangeStore."""
    return MockExchangeStore()


@pytest.fixture
def mock_providers(mock_embedding_provider, mock_store):
    """
    Fixture that patches the embedding registry AND the store to use mocks.

    Usage:
        def test_something(mock_providers, memory):
            mock_providers["store"].insert_exchange(exchange, embedding)
            page = memory.search("query")
    """
    mock_reg = MagicMock()
    mock_reg.create_embedding.return_value = mock_embedding_provider

    with patch("episodic_memory.api.get_registry", return_value=mock_reg), \
         patch("episodic_memory.store.ExchangeStore", side_effect=mock_store.open):
        yield {
            "embedding": mock_embedding_provider,
            "store": mock_store,
            "registry": mock_reg,
        }


@pytest.fixture
def memory(mock_providers, tmp_path):
    """EpisodicMemory wired to the mock store and embedder."""
    from episodic_memory.api import EpisodicMemory
    from episodic_memory.config import MemoryConfig

    config = MemoryConfig(path=tmp_path)
    with EpisodicMemory(config=config, db_path=tmp_path / "conversations.db") as em:
        yield em


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (loading real ML models)"
    )
