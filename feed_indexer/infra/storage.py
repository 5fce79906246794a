"""Storage abstractions for the item store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                source_handle TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                timestamp INTEGER NOT NULL,
                likes INTEGER NOT NULL DEFAULT 0,
                reposts INTEGER NOT NULL DEFAULT 0,
                replies INTEGER NOT NULL DEFAULT 0,
                views INTEGER NOT NULL DEFAULT 0,
                has_media INTEGER NOT NULL DEFAULT 0,
                media_urls TEXT NOT NULL DEFAULT '[]',
                is_repost INTEGER NOT NULL DEFAULT 0,
                is_quote INTEGER NOT NULL DEFAULT 0,
                quoted_item_id TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_items_source ON items(source_handle);
            CREATE INDEX IF NOT EXISTS idx_items_timestamp ON items(timestamp);
            CREATE INDEX IF NOT EXISTS idx_items_source_timestamp
                ON items(source_handle, timestamp);

            CREATE TABLE IF NOT EXISTS sources (
                handle TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                avatar_url TEXT NOT NULL DEFAULT '',
                total_indexed INTEGER NOT NULL DEFAULT 0,
                oldest_timestamp INTEGER NOT NULL,
                newest_timestamp INTEGER NOT NULL,
                last_sync_at INTEGER NOT NULL,
                sync_status TEXT NOT NULL DEFAULT 'idle'
            );
            CREATE INDEX IF NOT EXISTS idx_sources_last_sync ON sources(last_sync_at);
            """
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        for candidate in (path, path.with_name(path.name + "-wal"), path.with_name(path.name + "-shm")):
            if candidate.exists():
                candidate.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SQLiteManager"]
