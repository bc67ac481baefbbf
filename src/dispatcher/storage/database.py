"""SQLite database with WAL mode for the dispatch history log."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from dispatcher.config import default_data_dir


class Database:
    """SQLite storage layer with WAL mode for the dispatcher."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or default_data_dir()
        self.db_path = self.data_dir / "data" / "dispatcher.db"

    def exists(self) -> bool:
        return self.db_path.exists()

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with WAL mode."""
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and return results."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0

    def execute_many(self, sql: str, rows: Iterable[tuple[Any, ...]]) -> int:
        """Execute a statement for each row in one transaction; return rows written."""
        with self.connect() as conn:
            cursor = conn.executemany(sql, rows)
            return cursor.rowcount


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY,
    executor_id TEXT NOT NULL,
    vector TEXT NOT NULL,
    difficulty REAL NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    quality_score REAL NOT NULL,
    success INTEGER NOT NULL,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    timestamp REAL NOT NULL,
    task_preview TEXT NOT NULL DEFAULT '',
    CHECK (quality_score BETWEEN 0.0 AND 10.0),
    CHECK (difficulty BETWEEN 0.0 AND 1.0),
    CHECK (duration_ms >= 0)
);

CREATE INDEX IF NOT EXISTS idx_history_executor ON history(executor_id);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
