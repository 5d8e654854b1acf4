"""
SQLite database connection management.

Each thread gets its own connection, opened in autocommit mode so that a
single statement is its own transaction. Multi-statement writes go
through ``Database.transaction()``, which takes the write lock up front.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

from intel_graph.config import Settings
from intel_graph.core.exceptions import DatabaseError
from intel_graph.storage.schema import SchemaManager
from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


class Database:
    """
    SQLite database manager with one connection per thread.

    Provides:
    - WAL mode so snapshot workers read while requests write
    - Foreign keys with cascading deletes
    - Schema creation on first open

    Example:
        >>> db = Database.from_settings(settings)
        >>> with db.transaction():
        ...     db.update("nodes", {"label": "Acme"}, "id = ?", (node_id,))
        >>> row = db.fetch_one("SELECT * FROM nodes WHERE id = ?", (node_id,))
    """

    def __init__(
        self,
        database_path: Path | str,
        wal_mode: bool = True,
        cache_size_mb: int = 64,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if str(database_path) == ":memory:":
            raise DatabaseError(
                "In-memory databases are not shared between threads; use a file path",
            )
        self.database_path = Path(database_path)
        self.wal_mode = wal_mode
        self.cache_size_mb = cache_size_mb
        self.busy_timeout_ms = busy_timeout_ms

        self._connections: dict[int, sqlite3.Connection] = {}
        self._lock = threading.Lock()
        self._initialized = False

        logger.debug(f"Database manager created (path={self.database_path})")

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Open (and if needed create) the database described by settings."""
        storage = settings.storage
        db = cls(
            database_path=storage.database_path,
            wal_mode=storage.wal_mode,
            cache_size_mb=storage.cache_size_mb,
            busy_timeout_ms=storage.busy_timeout_ms,
        )
        db.setup()
        return db

    def setup(self) -> None:
        """Create the parent directory and the schema."""
        if self._initialized:
            return
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        SchemaManager(self._get_connection()).initialize()
        self._initialized = True
        logger.info(f"Database ready at {self.database_path}")

    def _get_connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        conn = self._connections.get(thread_id)
        if conn is None:
            with self._lock:
                conn = self._connections.get(thread_id)
                if conn is None:
                    conn = self._create_connection()
                    self._connections[thread_id] = conn
        return conn

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.database_path),
                check_same_thread=False,
                timeout=self.busy_timeout_ms / 1000,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row

            cache_pages = (self.cache_size_mb * 1024 * 1024) // 4096
            conn.execute(f"PRAGMA cache_size = -{cache_pages}")
            conn.execute(
                "PRAGMA journal_mode = WAL" if self.wal_mode else "PRAGMA journal_mode = DELETE")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA temp_store = MEMORY")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")

            logger.debug(
                f"Created new connection for thread {threading.get_ident()}")
            return conn

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to create database connection: {e}",
                details={"path": str(self.database_path)},
            ) from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed statements as one write transaction.

        Uses BEGIN IMMEDIATE so the write lock is held from the start.
        A transaction opened inside another one on the same thread joins
        the outer transaction.
        """
        conn = self._get_connection()
        if conn.in_transaction:
            yield conn
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to begin transaction: {e}") from e

        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        conn = self._get_connection()
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Query execution failed: {e}", query=sql) from e

    def executemany(self, sql: str, params_list: list[tuple]) -> sqlite3.Cursor:
        conn = self._get_connection()
        try:
            return conn.executemany(sql, params_list)
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Batch execution failed: {e}", query=sql) from e

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        """Fetch a single row as a dictionary, or None."""
        row = self.execute(sql, params).fetchone()
        return dict(row) if row else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        """Fetch all rows as dictionaries."""
        return [dict(row) for row in self.execute(sql, params).fetchall()]

    def fetch_value(self, sql: str, params: Sequence[Any] = (), default: Any = None) -> Any:
        """Fetch the first column of the first row."""
        row = self.execute(sql, params).fetchone()
        if row is None or row[0] is None:
            return default
        return row[0]

    def insert(self, table: str, data: dict) -> int:
        """Insert a row and return its rowid."""
        columns = ", ".join(data.keys())
        placeholders = ", ".join("?" * len(data))
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return self.execute(sql, tuple(data.values())).lastrowid

    def update(
        self,
        table: str,
        data: dict,
        where: str,
        params: Sequence[Any] = (),
    ) -> int:
        """Update rows matching ``where`` and return the affected count."""
        if not data:
            return 0
        set_clause = ", ".join(f"{k} = ?" for k in data.keys())
        sql = f"UPDATE {table} SET {set_clause} WHERE {where}"
        return self.execute(sql, tuple(data.values()) + tuple(params)).rowcount

    def delete(self, table: str, where: str, params: Sequence[Any] = ()) -> int:
        """Delete rows matching ``where`` and return the deleted count."""
        return self.execute(f"DELETE FROM {table} WHERE {where}", params).rowcount

    def close(self) -> None:
        """Close every thread's connection."""
        with self._lock:
            for conn in self._connections.values():
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection: {e}")
            self._connections.clear()
        logger.debug("All database connections closed")

    def checkpoint(self) -> None:
        """Force a WAL checkpoint."""
        if self.wal_mode:
            self.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    @property
    def size_bytes(self) -> int:
        if self.database_path.exists():
            return self.database_path.stat().st_size
        return 0

    def __repr__(self) -> str:
        status = "initialized" if self._initialized else "not initialized"
        return f"Database(path={self.database_path!r}, {status})"
