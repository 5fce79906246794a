"""Deduplicating item store with per-source rollups on top of SQLite."""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, Iterator

import structlog

from ..errors import StoreError
from ..infra.storage import SQLiteManager
from .models import Item, SourceSummary, StoreStats, SyncStatus

# SQLite 默认最多 999 个绑定参数
_ID_CHUNK = 500

_INSERT_ITEM = """
    INSERT INTO items(
        id, source_handle, text, timestamp, likes, reposts, replies, views,
        has_media, media_urls, is_repost, is_quote, quoted_item_id
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        source_handle=row["source_handle"],
        text=row["text"],
        timestamp=row["timestamp"],
        likes=row["likes"],
        reposts=row["reposts"],
        replies=row["replies"],
        views=row["views"],
        has_media=bool(row["has_media"]),
        media_urls=tuple(json.loads(row["media_urls"] or "[]")),
        is_repost=bool(row["is_repost"]),
        is_quote=bool(row["is_quote"]),
        quoted_item_id=row["quoted_item_id"],
    )


def _row_to_summary(row: sqlite3.Row) -> SourceSummary:
    return SourceSummary(
        handle=row["handle"],
        display_name=row["display_name"],
        avatar_url=row["avatar_url"],
        total_indexed=row["total_indexed"],
        oldest_timestamp=row["oldest_timestamp"],
        newest_timestamp=row["newest_timestamp"],
        last_sync_at=row["last_sync_at"],
        sync_status=SyncStatus(row["sync_status"]),
    )


class ItemStore:
    """Own the ``items`` and ``sources`` tables.

    Writers are serialised through one lock and each write runs inside a single
    ``BEGIN IMMEDIATE`` transaction, so the existing-id lookup and the insert of
    an ingestion batch never interleave with another batch.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        clock: Callable[[], int] = _now_ms,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.clock = clock
        self.logger = logger or structlog.get_logger("feed_indexer.store")
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def ingest(self, items: Iterable[Item]) -> int:
        """Insert items whose ids are not stored yet; return how many were new."""

        batch: dict[str, Item] = {}
        for item in items:
            batch.setdefault(item.id, item)
        if not batch:
            return 0
        ids = list(batch)
        try:
            with self._lock, self._transaction() as conn:
                existing: set[str] = set()
                for start in range(0, len(ids), _ID_CHUNK):
                    chunk = ids[start : start + _ID_CHUNK]
                    placeholders = ",".join("?" for _ in chunk)
                    rows = conn.execute(
                        f"SELECT id FROM items WHERE id IN ({placeholders})", chunk
                    ).fetchall()
                    existing.update(row["id"] for row in rows)
                fresh = [item for item_id, item in batch.items() if item_id not in existing]
                if fresh:
                    conn.executemany(
                        _INSERT_ITEM,
                        [
                            (
                                item.id,
                                item.source_handle,
                                item.text,
                                item.timestamp,
                                item.likes,
                                item.reposts,
                                item.replies,
                                item.views,
                                int(item.has_media),
                                json.dumps(list(item.media_urls), ensure_ascii=False),
                                int(item.is_repost),
                                int(item.is_quote),
                                item.quoted_item_id,
                            )
                            for item in fresh
                        ],
                    )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to ingest batch: {exc}") from exc
        self.logger.info("ingest_batch", received=len(batch), inserted=len(fresh))
        return len(fresh)

    def recompute_summary(
        self,
        handle: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> SourceSummary | None:
        """Rebuild the rollup row for ``handle`` from its stored items.

        Nothing is written when the handle has no items. The sync status of an
        existing summary is carried over untouched.
        """

        try:
            with self._lock, self._transaction() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS total, MIN(timestamp) AS oldest, MAX(timestamp) AS newest "
                    "FROM items WHERE source_handle = ?",
                    (handle,),
                ).fetchone()
                total = row["total"]
                if not total:
                    return None
                previous_row = conn.execute(
                    "SELECT * FROM sources WHERE handle = ?", (handle,)
                ).fetchone()
                previous = _row_to_summary(previous_row) if previous_row else None
                summary = SourceSummary(
                    handle=handle,
                    display_name=(
                        display_name
                        if display_name is not None
                        else (previous.display_name if previous else handle)
                    ),
                    avatar_url=(
                        avatar_url
                        if avatar_url is not None
                        else (previous.avatar_url if previous else "")
                    ),
                    total_indexed=total,
                    oldest_timestamp=row["oldest"],
                    newest_timestamp=row["newest"],
                    last_sync_at=self.clock(),
                    sync_status=previous.sync_status if previous else SyncStatus.IDLE,
                )
                conn.execute(
                    "INSERT OR REPLACE INTO sources(handle, display_name, avatar_url, total_indexed, "
                    "oldest_timestamp, newest_timestamp, last_sync_at, sync_status) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        summary.handle,
                        summary.display_name,
                        summary.avatar_url,
                        summary.total_indexed,
                        summary.oldest_timestamp,
                        summary.newest_timestamp,
                        summary.last_sync_at,
                        summary.sync_status.value,
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to update summary for {handle}: {exc}") from exc
        return summary

    def set_sync_status(self, handle: str, status: SyncStatus | str) -> None:
        """Change only the sync status; a handle without a summary is ignored."""

        status = SyncStatus(status)
        try:
            with self._lock, self._transaction() as conn:
                updated = conn.execute(
                    "UPDATE sources SET sync_status = ? WHERE handle = ?",
                    (status.value, handle),
                ).rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to set sync status for {handle}: {exc}") from exc
        if updated:
            self.logger.debug("sync_status_changed", source=handle, status=status.value)

    def purge(self, handle: str) -> int:
        """Delete every item of ``handle`` and its summary in one transaction."""

        try:
            with self._lock, self._transaction() as conn:
                removed = conn.execute(
                    "DELETE FROM items WHERE source_handle = ?", (handle,)
                ).rowcount
                conn.execute("DELETE FROM sources WHERE handle = ?", (handle,))
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to purge {handle}: {exc}") from exc
        self.logger.info("source_purged", source=handle, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Store read failed: {exc}") from exc

    def items_for(self, handle: str | None = None) -> list[Item]:
        """Stored items in insertion order, optionally limited to one source."""

        if handle is None:
            rows = self._query("SELECT * FROM items ORDER BY rowid")
        else:
            rows = self._query(
                "SELECT * FROM items WHERE source_handle = ? ORDER BY rowid", (handle,)
            )
        return [_row_to_item(row) for row in rows]

    def has_item(self, item_id: str) -> bool:
        return bool(self._query("SELECT 1 FROM items WHERE id = ?", (item_id,)))

    def indexed_count(self, handle: str) -> int:
        rows = self._query("SELECT COUNT(*) FROM items WHERE source_handle = ?", (handle,))
        return rows[0][0]

    def get_summary(self, handle: str) -> SourceSummary | None:
        rows = self._query("SELECT * FROM sources WHERE handle = ?", (handle,))
        return _row_to_summary(rows[0]) if rows else None

    def list_summaries(self) -> list[SourceSummary]:
        rows = self._query("SELECT * FROM sources ORDER BY last_sync_at DESC")
        return [_row_to_summary(row) for row in rows]

    def stats(self) -> StoreStats:
        item_count = self._query("SELECT COUNT(*) FROM items")[0][0]
        source_count = self._query("SELECT COUNT(*) FROM sources")[0][0]
        try:
            page_count = self._query("PRAGMA page_count")[0][0]
            page_size = self._query("PRAGMA page_size")[0][0]
            estimated = int(page_count) * int(page_size)
        except (StoreError, IndexError, TypeError, ValueError):
            estimated = 0
        return StoreStats(item_count=item_count, source_count=source_count, estimated_bytes=estimated)

    def reset(self) -> None:
        self.manager.reset(self.db_path)
        self._conn = self.manager.connect(self.db_path)


__all__ = ["ItemStore"]
