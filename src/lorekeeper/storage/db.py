"""SQLite database setup and schema management.

One embedded database file per analyzed repository, stored in the
repository's state directory. Writes outside an explicit transaction are
committed immediately so every read observes prior writes.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".lorekeeper"
DATABASE_NAME = "state.db"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analysis_steps (
    id TEXT PRIMARY KEY,
    step_type TEXT NOT NULL,
    status TEXT NOT NULL,
    input_data TEXT NOT NULL,
    output_data TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS knowledge_entries (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    subcategory TEXT,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    relevance_score REAL NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_analysis_steps_status ON analysis_steps(status);
CREATE INDEX IF NOT EXISTS idx_analysis_steps_created_at ON analysis_steps(created_at);
CREATE INDEX IF NOT EXISTS idx_knowledge_entries_category ON knowledge_entries(category);
CREATE INDEX IF NOT EXISTS idx_knowledge_entries_relevance ON knowledge_entries(relevance_score DESC);
"""


class StorageError(Exception):
    """Exception raised when the durable store cannot be read or written.

    Persistence errors are fatal: they indicate a broken local environment
    and are never retried by the pipeline.
    """

    pass


def state_dir(repo_path: Path) -> Path:
    """Return the lorekeeper state directory for a repository."""
    return repo_path / STATE_DIR_NAME


def database_path(repo_path: Path) -> Path:
    """Return the database file path for a repository."""
    return state_dir(repo_path) / DATABASE_NAME


def format_timestamp(value: datetime) -> str:
    """Serialize a timestamp as fixed-width UTC ISO 8601.

    Fixed width keeps lexical order equal to chronological order.
    """
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Thin wrapper around a SQLite connection with the lorekeeper schema."""

    def __init__(self, conn: sqlite3.Connection, path: Path | None = None) -> None:
        self._conn = conn
        self._depth = 0
        self.path = path

    @classmethod
    def open(cls, db_path: Path) -> Database:
        """Create or open a database file and apply the schema.

        Raises:
            StorageError: If the file cannot be created or opened
        """
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(db_path), isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open database {db_path}: {e}") from e

        logger.debug("Opened database %s", db_path)
        return cls(conn, db_path)

    @classmethod
    def for_repository(cls, repo_path: Path) -> Database:
        """Open the database belonging to a repository."""
        return cls.open(database_path(repo_path))

    @classmethod
    def in_memory(cls) -> Database:
        """Open a private in-memory database (used in tests)."""
        conn = sqlite3.connect(":memory:", isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.executescript(SCHEMA_SQL)
        return cls(conn)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute a statement, translating driver errors to StorageError."""
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Database operation failed: {e}") from e

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Group writes into one atomic unit.

        Nested calls join the outermost transaction.
        """
        if self._depth == 0:
            self.execute("BEGIN IMMEDIATE")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.execute("ROLLBACK")
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                self.execute("COMMIT")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
