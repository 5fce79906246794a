from __future__ import annotations

from feed_indexer.infra import SQLiteManager


def test_sqlite_manager_initialises_schema(tmp_path) -> None:
    manager = SQLiteManager()
    conn = manager.connect(tmp_path / "feed.db")
    item_columns = {row["name"] for row in conn.execute("PRAGMA table_info(items)").fetchall()}
    source_columns = {row["name"] for row in conn.execute("PRAGMA table_info(sources)").fetchall()}
    assert {"id", "source_handle", "text", "timestamp", "likes", "views", "media_urls"}.issubset(item_columns)
    assert {"handle", "display_name", "total_indexed", "last_sync_at", "sync_status"}.issubset(source_columns)
    indexes = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
    assert {"idx_items_source", "idx_items_timestamp", "idx_sources_last_sync"}.issubset(indexes)
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    manager.close_all()


def test_sqlite_manager_reuses_connection(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "nested" / "feed.db"
    assert manager.connect(path) is manager.connect(path)
    assert path.parent.exists()
    manager.close_all()


def test_sqlite_manager_reset(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "feed.db"
    conn = manager.connect(path)
    conn.execute(
        "INSERT INTO items(id, source_handle, text, timestamp) VALUES ('1', 'alice', 'hi', 1)"
    )
    conn.commit()
    manager.reset(path)
    assert not path.exists()
    conn = manager.connect(path)
    rows = conn.execute("SELECT count(*) FROM items").fetchone()
    assert rows[0] == 0
    manager.close_all()
