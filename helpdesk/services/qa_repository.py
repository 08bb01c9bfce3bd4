"""SQLite-backed store for answered questions.

Design notes
------------
- Rows keep insertion order through an ``INTEGER PRIMARY KEY`` so history is
  always returned chronologically.
- Image URLs are stored as a JSON array in ``images_json``.
- WAL mode is enabled. Suitable for single-writer, multi-reader local use.

Default location (if not provided):  ~/helpdesk/data/history.db
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import sqlite3
from typing import Final, Protocol

from helpdesk.models.qa import HistoryEntry

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH: Final[Path] = Path.home() / "helpdesk" / "data" / "history.db"
DEFAULT_TABLE: Final[str] = "qa_history"


class QARepository(Protocol):
    """Contract for persisting question/answer history."""

    def save(self, entry: HistoryEntry) -> HistoryEntry:
        """Persist ``entry`` and return it with its id and date filled in."""

    def load(self) -> list[HistoryEntry]:
        """Return every stored entry, oldest first."""

    def clear(self) -> None:
        """Remove all stored entries."""


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class LocalSQLiteQARepository:
    """SQLite repository for the history endpoints."""

    def __init__(self, db_path: str | Path | None = None, *, table: str = DEFAULT_TABLE) -> None:
        self._db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._table = table

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute("PRAGMA journal_mode = WAL;")
        self._bootstrap()

    @classmethod
    def from_env(cls) -> "LocalSQLiteQARepository":
        return cls(db_path=os.getenv("HELPDESK_DB_PATH") or None)

    # --- schema ----------------------------------------------------------------

    def _bootstrap(self) -> None:
        """Create the history table if it doesn't exist."""
        with self._conn:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    images_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

    # --- operations --------------------------------------------------------------

    def save(self, entry: HistoryEntry) -> HistoryEntry:
        created_at = entry.date or _iso_now()
        with self._conn:
            cursor = self._conn.execute(
                f"INSERT INTO {self._table} (question, answer, images_json, created_at) VALUES (?, ?, ?, ?);",
                (
                    entry.question,
                    entry.answer,
                    json.dumps(list(entry.images), ensure_ascii=False),
                    created_at,
                ),
            )
        return entry.model_copy(update={"id": cursor.lastrowid, "date": created_at})

    def load(self) -> list[HistoryEntry]:
        rows = self._conn.execute(
            f"SELECT id, question, answer, images_json, created_at FROM {self._table} ORDER BY id ASC;"
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def clear(self) -> None:
        with self._conn:
            self._conn.execute(f"DELETE FROM {self._table};")
        logger.info("History cleared", extra={"event": "history.cleared"})

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
        try:
            images = json.loads(row["images_json"] or "[]")
        except json.JSONDecodeError:
            logger.warning(
                "Discarding malformed image list for history row %s",
                row["id"],
                extra={"event": "history.images_invalid"},
            )
            images = []
        return HistoryEntry(
            id=row["id"],
            question=row["question"],
            answer=row["answer"],
            images=[str(image) for image in images],
            date=row["created_at"],
        )


__all__ = ["DEFAULT_DB_PATH", "LocalSQLiteQARepository", "QARepository"]
