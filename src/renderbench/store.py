# Copyright (c) Syntropy Systems
"""Key-value persistence shared across suite invocations.

Identity pins and the rest handoff token live here. The core depends only on
the KeyValueStore protocol.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, cast

if TYPE_CHECKING:
    from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class KeyValueStore(Protocol):
    """Minimal string key-value store."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store; state lives as long as the object."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self, prefix: str = "") -> list[tuple[str, str]]:
        """Return stored pairs whose key starts with prefix."""
        return sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


class SQLiteStore:
    """Key-value store backed by the project's SQLite database."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        init_db(db_path)

    def get(self, key: str) -> str | None:
        conn = get_connection(self.db_path)
        try:
            row = cast(
                "sqlite3.Row | None",
                conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone(),
            )
        finally:
            conn.close()
        return None if row is None else cast("str", row["value"])

    def set(self, key: str, value: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
                """,
                (key, value, utcnow()),
            )
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        finally:
            conn.close()

    def items(self, prefix: str = "") -> list[tuple[str, str]]:
        """Return stored pairs whose key starts with prefix."""
        conn = get_connection(self.db_path)
        try:
            rows = cast(
                "list[sqlite3.Row]",
                conn.execute(
                    "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall(),
            )
        finally:
            conn.close()
        return [(cast("str", row["key"]), cast("str", row["value"])) for row in rows]
