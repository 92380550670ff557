"""
Exchange store using SQLite with the sqlite-vec extension.

Holds archived exchanges, their tool calls and a 384-dimension vector index.
The vector index (vec0) only answers "top k nearest" queries; it has no
offset. Substring queries on the relational table support real
LIMIT/OFFSET and an exact COUNT.

Rows are mapped to typed records here; nothing untyped leaves this module.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, Optional, Sequence

import sqlite_vec

from .errors import StoreError
from .types import Exchange, TimeRange, ToolCall

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 384

_EXCHANGE_COLUMNS = """
    e.id,
    e.project,
    e.timestamp,
    e.user_message,
    e.assistant_message,
    e.archive_path,
    e.line_start,
    e.line_end
"""


def _like_pattern(query: str) -> str:
    """Literal substring pattern for LIKE ... ESCAPE '\\'."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _time_clause(time_range: Optional[TimeRange]) -> tuple[str, list[str]]:
    """SQL fragment (``AND ...``) and parameters for a time range."""
    conditions: list[str] = []
    params: list[str] = []
    if time_range is not None:
        if time_range.after:
            conditions.append("e.timestamp >= ?")
            params.append(time_range.after)
        if time_range.before:
            conditions.append("e.timestamp <= ?")
            params.append(time_range.before)
    if not conditions:
        return "", params
    return "AND " + " AND ".join(conditions), params


def _row_to_exchange(row: sqlite3.Row) -> Exchange:
    return Exchange(
        id=row["id"],
        project=row["project"],
        timestamp=row["timestamp"],
        user_message=row["user_message"],
        assistant_message=row["assistant_message"],
        archive_path=row["archive_path"],
        line_start=row["line_start"],
        line_end=row["line_end"],
    )


class ExchangeStore:
    """
    SQLite-backed store for archived exchanges.

    Opened per search call and closed when the call ends; use it as a
    context manager. The connection allows use from worker threads so
    multi-concept retrievals can share it.

    Searches open the database read-only: a missing file is an error, and
    nothing on disk changes. Only the indexing side opens it writable,
    which creates the file and schema when needed.
    """

    def __init__(self, db_path: Path, *, writable: bool = False):
        """
        Args:
            db_path: Path to SQLite database file
            writable: Open for indexing (create file and tables if missing)

        Raises:
            StoreError: If the database or the vector extension can't be opened
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        try:
            if writable:
                self._init_db()
            else:
                self._open_read_only()
        except (sqlite3.Error, OSError) as e:
            self.close()
            raise StoreError(f"Cannot open exchange store at {self._db_path}: {e}") from e

    def _connect(self, database: str, uri: bool = False) -> None:
        self._conn = sqlite3.connect(database, uri=uri, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        self._conn.enable_load_extension(True)
        sqlite_vec.load(self._conn)
        self._conn.enable_load_extension(False)

    def _open_read_only(self) -> None:
        """Open an existing database for queries. No file, pragma or schema writes."""
        uri = self._db_path.resolve().as_uri() + "?mode=ro"
        self._connect(uri, uri=True)
        self._conn.execute("PRAGMA busy_timeout=5000")

    def _init_db(self) -> None:
        """Open the database for writing, load sqlite-vec and ensure tables exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connect(str(self._db_path))

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS exchanges (
                id TEXT PRIMARY KEY,
                project TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                user_message TEXT NOT NULL,
                assistant_message TEXT NOT NULL,
                archive_path TEXT NOT NULL,
                line_start INTEGER NOT NULL,
                line_end INTEGER NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS tool_calls (
                id TEXT PRIMARY KEY,
                exchange_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                tool_input TEXT,
                tool_result TEXT,
                is_error BOOLEAN DEFAULT 0,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (exchange_id) REFERENCES exchanges(id)
            )
        """)
        self._conn.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS vec_exchanges USING vec0(
                id TEXT PRIMARY KEY,
                embedding FLOAT[{EMBEDDING_DIMENSION}]
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_timestamp
            ON exchanges(timestamp DESC)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_tool_exchange
            ON tool_calls(exchange_id)
        """)
        self._conn.commit()

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        if self._conn is None:
            raise StoreError("Exchange store is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(f"Exchange store query failed: {e}") from e

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def vector_query(
        self,
        embedding: list[float],
        k: int,
        time_range: Optional[TimeRange] = None,
    ) -> list[tuple[Exchange, float]]:
        """
        Nearest stored exchanges to an embedding.

        There is no offset: callers wanting page N must ask for enough
        neighbours and slice locally.

        Args:
            embedding: Query vector
            k: Number of nearest neighbours to request
            time_range: Optional timestamp bounds

        Returns:
            (exchange, distance) pairs, ascending by distance
        """
        if k <= 0:
            return []
        time_sql, time_params = _time_clause(time_range)
        cursor = self._execute(f"""
            SELECT {_EXCHANGE_COLUMNS},
                vec.distance
            FROM vec_exchanges AS vec
            JOIN exchanges AS e ON vec.id = e.id
            WHERE vec.embedding MATCH ?
              AND k = ?
              {time_sql}
            ORDER BY vec.distance ASC
        """, (sqlite_vec.serialize_float32(embedding), k, *time_params))
        return [(_row_to_exchange(row), row["distance"]) for row in cursor]

    def text_query(
        self,
        pattern: str,
        time_range: Optional[TimeRange] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Exchange]:
        """
        Exchanges whose user or assistant message contains ``pattern``.

        Case-insensitive (ASCII, per SQLite LIKE). Newest first.
        """
        like = _like_pattern(pattern)
        time_sql, time_params = _time_clause(time_range)
        cursor = self._execute(f"""
            SELECT {_EXCHANGE_COLUMNS}
            FROM exchanges AS e
            WHERE (e.user_message LIKE ? ESCAPE '\\' OR e.assistant_message LIKE ? ESCAPE '\\')
              {time_sql}
            ORDER BY e.timestamp DESC, e.id
            LIMIT ? OFFSET ?
        """, (like, like, *time_params, limit, offset))
        return [_row_to_exchange(row) for row in cursor]

    def text_count(self, pattern: str, time_range: Optional[TimeRange] = None) -> int:
        """Exact number of exchanges matching ``pattern``."""
        like = _like_pattern(pattern)
        time_sql, time_params = _time_clause(time_range)
        cursor = self._execute(f"""
            SELECT COUNT(*)
            FROM exchanges AS e
            WHERE (e.user_message LIKE ? ESCAPE '\\' OR e.assistant_message LIKE ? ESCAPE '\\')
              {time_sql}
        """, (like, like, *time_params))
        return cursor.fetchone()[0]

    def tool_calls_for(self, exchange_ids: Iterable[str]) -> dict[str, list[ToolCall]]:
        """
        Tool calls grouped by exchange, in timestamp order.

        Returns:
            Dict mapping exchange id → tool calls (exchanges without calls omitted)
        """
        ids = list(dict.fromkeys(exchange_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        cursor = self._execute(f"""
            SELECT id, exchange_id, tool_name, tool_input, tool_result, is_error, timestamp
            FROM tool_calls
            WHERE exchange_id IN ({placeholders})
            ORDER BY timestamp, id
        """, ids)

        calls: dict[str, list[ToolCall]] = {}
        for row in cursor:
            tool_input = json.loads(row["tool_input"]) if row["tool_input"] else None
            calls.setdefault(row["exchange_id"], []).append(ToolCall(
                id=row["id"],
                exchange_id=row["exchange_id"],
                tool_name=row["tool_name"],
                tool_input=tool_input,
                tool_result=row["tool_result"],
                is_error=bool(row["is_error"]),
                timestamp=row["timestamp"],
            ))
        return calls

    def count(self) -> int:
        """Number of stored exchanges."""
        return self._execute("SELECT COUNT(*) FROM exchanges").fetchone()[0]

    # -------------------------------------------------------------------------
    # Write Operations (indexing side; need writable=True)
    # -------------------------------------------------------------------------

    def insert_exchange(self, exchange: Exchange, embedding: list[float]) -> None:
        """
        Insert or replace an exchange, its vector and its tool calls.

        Raises:
            ValueError: If the embedding has the wrong dimension
        """
        if len(embedding) != EMBEDDING_DIMENSION:
            raise ValueError(
                f"Embedding must have {EMBEDDING_DIMENSION} dimensions, got {len(embedding)}"
            )
        self._execute("""
            INSERT OR REPLACE INTO exchanges
            (id, project, timestamp, user_message, assistant_message,
             archive_path, line_start, line_end)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            exchange.id, exchange.project, exchange.timestamp,
            exchange.user_message, exchange.assistant_message,
            exchange.archive_path, exchange.line_start, exchange.line_end,
        ))

        # vec0 tables don't support REPLACE
        self._execute("DELETE FROM vec_exchanges WHERE id = ?", (exchange.id,))
        self._execute(
            "INSERT INTO vec_exchanges (id, embedding) VALUES (?, ?)",
            (exchange.id, sqlite_vec.serialize_float32(embedding)),
        )

        for tc in exchange.tool_calls:
            self._execute("""
                INSERT OR REPLACE INTO tool_calls
                (id, exchange_id, tool_name, tool_input, tool_result, is_error, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                tc.id, exchange.id, tc.tool_name,
                json.dumps(tc.tool_input) if tc.tool_input is not None else None,
                tc.tool_result, 1 if tc.is_error else 0, tc.timestamp,
            ))
        self._conn.commit()

    def delete_exchange(self, id: str) -> bool:
        """Delete an exchange with its vector and tool calls."""
        self._execute("DELETE FROM vec_exchanges WHERE id = ?", (id,))
        self._execute("DELETE FROM tool_calls WHERE exchange_id = ?", (id,))
        cursor = self._execute("DELETE FROM exchanges WHERE id = ?", (id,))
        self._conn.commit()
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
