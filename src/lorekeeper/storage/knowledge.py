"""Durable knowledge store.

Entries are inserted once and never mutated; consumers always read the
full set ordered by relevance (highest first), then age (oldest first).
"""

from __future__ import annotations

import sqlite3

from lorekeeper.models.analysis import KnowledgeEntry
from lorekeeper.storage.db import Database, format_timestamp, parse_timestamp


class KnowledgeStore:
    """Data access layer for the knowledge_entries table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, entry: KnowledgeEntry) -> None:
        """Insert a knowledge entry."""
        assert entry.updated_at is not None
        self._db.execute(
            """INSERT INTO knowledge_entries
            (id, category, subcategory, title, content, relevance_score, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.id,
                entry.category,
                entry.subcategory,
                entry.title,
                entry.content,
                entry.relevance_score,
                format_timestamp(entry.created_at),
                format_timestamp(entry.updated_at),
            ),
        )

    def all_ordered(self) -> list[KnowledgeEntry]:
        """Return every entry, relevance descending then created_at ascending."""
        rows = self._db.fetchall(
            """SELECT * FROM knowledge_entries
            ORDER BY relevance_score DESC, created_at ASC, rowid ASC"""
        )
        return [self._row_to_entry(row) for row in rows]

    def count(self) -> int:
        row = self._db.fetchone("SELECT COUNT(*) AS n FROM knowledge_entries")
        return int(row["n"]) if row else 0

    def render(self) -> str:
        """Assemble all accumulated knowledge into one text block."""
        return "".join(
            f"## {entry.category} - {entry.title}\n{entry.content}\n\n"
            for entry in self.all_ordered()
        )

    def _row_to_entry(self, row: sqlite3.Row) -> KnowledgeEntry:
        return KnowledgeEntry(
            id=row["id"],
            category=row["category"],
            subcategory=row["subcategory"],
            title=row["title"],
            content=row["content"],
            relevance_score=float(row["relevance_score"]),
            created_at=parse_timestamp(row["created_at"]),  # type: ignore[arg-type]
            updated_at=parse_timestamp(row["updated_at"]),
        )
