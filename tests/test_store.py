"""
Tests for the SQLite + sqlite-vec exchange store.

These use the real extension; they are skipped where it isn't installed.
"""

import math
import sqlite3

import pytest

pytest.importorskip("sqlite_vec")

from episodic_memory.api import EpisodicMemory
from episodic_memory.config import MemoryConfig
from episodic_memory.errors import StoreError
from episodic_memory.providers.base import exchange_embedding_text
from episodic_memory.store import ExchangeStore
from episodic_memory.types import TimeRange, ToolCall


@pytest.fixture
def store(tmp_path):
    with ExchangeStore(tmp_path / "conversations.db", writable=True) as s:
        yield s


@pytest.fixture
def populated(store, make_exchange, make_vector):
    store.insert_exchange(
        make_exchange("near", timestamp="2025-10-01T10:00:00.000Z",
                      user_message="Docker networking bridge",
                      tool_calls=(
                          ToolCall(id="t2", exchange_id="near", tool_name="Read",
                                   timestamp="2025-10-01T10:00:02.000Z"),
                          ToolCall(id="t1", exchange_id="near", tool_name="Bash",
                                   tool_input={"command": "docker ps"},
                                   timestamp="2025-10-01T10:00:01.000Z"),
                      )),
        make_vector((0, 1.0)),
    )
    store.insert_exchange(
        make_exchange("mid", timestamp="2025-10-02T10:00:00.000Z",
                      user_message="Progress at 100% but the_build hangs"),
        make_vector((0, 0.6), (1, 0.8)),
    )
    store.insert_exchange(
        make_exchange("far", timestamp="2025-10-03T10:00:00.000Z",
                      user_message="Unrelated", assistant_message="Use DOCKER compose."),
        make_vector((1, 1.0)),
    )
    return store


class TestVectorQuery:

    def test_nearest_first_with_distance(self, populated, make_vector):
        rows = populated.vector_query(make_vector((0, 1.0)), k=3)
        assert [e.id for e, _ in rows] == ["near", "mid", "far"]
        distances = [d for _, d in rows]
        assert distances[0] == pytest.approx(0.0, abs=1e-6)
        assert distances[2] == pytest.approx(math.sqrt(2), abs=1e-5)
        assert distances == sorted(distances)

    def test_k_limits_window(self, populated, make_vector):
        rows = populated.vector_query(make_vector((0, 1.0)), k=2)
        assert [e.id for e, _ in rows] == ["near", "mid"]

    def test_zero_k(self, populated, make_vector):
        assert populated.vector_query(make_vector((0, 1.0)), k=0) == []

    def test_time_range(self, populated, make_vector):
        rows = populated.vector_query(
            make_vector((0, 1.0)), k=3, time_range=TimeRange(after="2025-10-02"),
        )
        assert {e.id for e, _ in rows} == {"mid", "far"}

    def test_rows_are_typed(self, populated, make_vector):
        exchange, _ = populated.vector_query(make_vector((0, 1.0)), k=1)[0]
        assert exchange.project == "my-project"
        assert exchange.line_start == 1
        assert exchange.line_end == 10
        assert exchange.tool_calls == ()


class TestTextQuery:

    def test_case_insensitive_both_messages(self, populated):
        assert [e.id for e in populated.text_query("docker")] == ["far", "near"]
        assert populated.text_count("docker") == 2
        assert populated.text_count("DOCKER") == 2

    def test_limit_offset(self, populated):
        assert [e.id for e in populated.text_query("docker", limit=1, offset=1)] == ["near"]

    def test_wildcards_are_literal(self, populated):
        assert [e.id for e in populated.text_query("100%")] == ["mid"]
        assert populated.text_count("%") == 1
        assert [e.id for e in populated.text_query("the_build")] == ["mid"]
        assert populated.text_count("s_h") == 0

    def test_time_range(self, populated):
        time_range = TimeRange(before="2025-10-02")
        assert [e.id for e in populated.text_query("docker", time_range)] == ["near"]
        assert populated.text_count("docker", time_range) == 1


class TestWrites:

    def test_tool_calls_grouped_in_order(self, populated):
        calls = populated.tool_calls_for(["near", "mid"])
        assert list(calls) == ["near"]
        assert [tc.tool_name for tc in calls["near"]] == ["Bash", "Read"]
        assert calls["near"][0].tool_input == {"command": "docker ps"}

    def test_replace_exchange(self, populated, make_exchange, make_vector):
        populated.insert_exchange(
            make_exchange("far", timestamp="2025-10-03T10:00:00.000Z", user_message="Edited"),
            make_vector((0, 1.0)),
        )
        assert populated.count() == 3
        rows = populated.vector_query(make_vector((0, 1.0)), k=2)
        assert {e.id for e, _ in rows} == {"near", "far"}

    def test_delete_exchange(self, populated):
        assert populated.delete_exchange("near") is True
        assert populated.delete_exchange("near") is False
        assert populated.count() == 2
        assert populated.tool_calls_for(["near"]) == {}

    def test_wrong_dimension(self, store, make_exchange):
        with pytest.raises(ValueError, match="384"):
            store.insert_exchange(make_exchange("x"), [0.1] * 10)


class TestReadOnly:
    """Search-side opens never touch the disk."""

    @pytest.fixture
    def db_path(self, tmp_path, make_exchange, make_vector):
        path = tmp_path / "conversations.db"
        with ExchangeStore(path, writable=True) as s:
            s.insert_exchange(
                make_exchange("e1", user_message="Docker networking bridge"),
                make_vector((0, 1.0)),
            )
        return path

    def test_missing_file_not_created(self, tmp_path):
        path = tmp_path / "nowhere" / "typo.db"
        with pytest.raises(StoreError, match="Cannot open"):
            ExchangeStore(path)
        assert not path.exists()
        assert not path.parent.exists()

    def test_search_missing_db_raises(self, tmp_path, mock_embedding_provider):
        path = tmp_path / "typo.db"
        memory = EpisodicMemory(
            config=MemoryConfig(path=tmp_path),
            db_path=path,
            embedding_provider=mock_embedding_provider,
        )
        for mode in ("text", "vector", "both"):
            with pytest.raises(StoreError):
                memory.search("docker", mode=mode)
        with pytest.raises(StoreError):
            memory.search_multiple_concepts(["docker", "bridge"])
        assert not path.exists()

    def test_search_leaves_file_unchanged(self, db_path, tmp_path, mock_embedding_provider):
        before = db_path.read_bytes()
        memory = EpisodicMemory(
            config=MemoryConfig(path=tmp_path),
            db_path=db_path,
            embedding_provider=mock_embedding_provider,
        )
        assert memory.search("docker", mode="both").pagination.total == 1
        memory.search("docker", mode="text")
        memory.search_multiple_concepts(["docker", "bridge"])
        assert db_path.read_bytes() == before

    def test_writes_rejected(self, db_path, make_exchange, make_vector):
        with ExchangeStore(db_path) as s:
            assert s.count() == 1
            with pytest.raises(StoreError):
                s.insert_exchange(make_exchange("e2"), make_vector((1, 1.0)))
            with pytest.raises(StoreError):
                s.delete_exchange("e1")
        with ExchangeStore(db_path) as s:
            assert s.count() == 1


class TestErrors:

    def test_unopenable_path(self, tmp_path):
        (tmp_path / "dir.db").mkdir()
        with pytest.raises(StoreError, match="Cannot open"):
            ExchangeStore(tmp_path / "dir.db")

    def test_closed_store(self, tmp_path):
        s = ExchangeStore(tmp_path / "conversations.db", writable=True)
        s.close()
        with pytest.raises(StoreError, match="closed"):
            s.text_query("x")

    def test_sql_error_wrapped(self, store):
        with pytest.raises(StoreError) as exc_info:
            store._execute("SELECT * FROM no_such_table")
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)


class TestEndToEnd:
    """Index with a mock embedder, then search through the real store."""

    def test_index_then_search(self, tmp_path, mock_embedding_provider, make_exchange, make_vector):
        exchanges = [
            make_exchange("a", timestamp="2025-10-01T10:00:00.000Z",
                          user_message="Set up React Router", archive_path="/A.jsonl"),
            make_exchange("b", timestamp="2025-10-02T10:00:00.000Z",
                          user_message="JWT authentication", archive_path="/A.jsonl"),
            make_exchange("c", timestamp="2025-10-03T10:00:00.000Z",
                          user_message="Fix React state bug", archive_path="/C.jsonl"),
        ]
        vectors = {
            "a": make_vector((0, 1.0)),
            "b": make_vector((1, 1.0)),
            "c": make_vector((0, 0.8), (2, 0.6)),
        }
        for e in exchanges:
            text = exchange_embedding_text(e.user_message, e.assistant_message)
            mock_embedding_provider.vectors[text] = vectors[e.id]
        mock_embedding_provider.vectors["routing"] = make_vector((0, 1.0))
        mock_embedding_provider.vectors["auth"] = make_vector((1, 1.0))

        memory = EpisodicMemory(
            config=MemoryConfig(path=tmp_path),
            db_path=tmp_path / "conversations.db",
            embedding_provider=mock_embedding_provider,
        )
        assert memory.index_exchanges(exchanges) == 3
        assert mock_embedding_provider.batch_calls == 1

        page = memory.search("routing", mode="vector", limit=2)
        assert [r.exchange.id for r in page.results] == ["a", "c"]
        assert page.results[0].similarity == pytest.approx(1.0, abs=1e-6)

        page = memory.search("react", mode="text", limit=10)
        assert [r.exchange.id for r in page.results] == ["c", "a"]
        assert page.pagination.total == 2

        multi = memory.search_multiple_concepts(["routing", "auth"], limit=2)
        assert [r.exchange.archive_path for r in multi.results] == ["/A.jsonl", "/C.jsonl"]
        assert multi.results[0].concept_similarities == pytest.approx([1.0, 1.0], abs=1e-6)
