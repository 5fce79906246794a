"""Coordinator wiring acquisition, extraction, the item store and search."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Callable, Iterable

import structlog

from .config import ScrollSettings
from .engine.detect import handle_from_path
from .engine.extract import extract_source_profile, parse_items_from_html
from .engine.models import Item, SearchQuery, SyncStatus
from .engine.scroll import ScrollHost, ScrollSession, ScrollState, StatusChannel
from .engine.search import SearchEngine
from .engine.store import ItemStore
from .logging_conf import configure_logging

COMMANDS = ("start", "pause", "resume", "stop", "get-state")


@dataclass(slots=True)
class IngestResponse:
    new_count: int
    indexed_count: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class StateSnapshot:
    """What the control surface shows for the observed source."""

    handle: str | None
    indexed_count: int
    processed_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Coordinator:
    """Central coordinator for one observed feed context.

    The coordinator tracks which source is on screen, feeds freshly rendered
    items into the store while the scroll session runs, and answers the
    command, ingestion and query messages of the control surface.
    """

    def __init__(
        self,
        store: ItemStore,
        host: ScrollHost | None = None,
        *,
        search: SearchEngine | None = None,
        settings: ScrollSettings | None = None,
        session: ScrollSession | None = None,
        html_source: Callable[[], str] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.search_engine = search or SearchEngine(store)
        self.host = host
        self.logger = logger or configure_logging().bind(component="coordinator")
        self.session = session
        if self.session is None and host is not None:
            self.session = ScrollSession(host, settings, logger=self.logger)
        if html_source is None and host is not None and hasattr(host, "content"):
            html_source = host.content  # type: ignore[attr-defined]
        self.html_source = html_source
        self.snapshots: StatusChannel[StateSnapshot] = StatusChannel(self.logger)
        self.handle: str | None = None
        self.indexed_count = 0
        self.display_name: str | None = None
        self.avatar_url: str | None = None
        self._processed_ids: set[str] = set()
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Observation and ingestion
    # ------------------------------------------------------------------
    def observe(self, path_or_url: str) -> str | None:
        """Switch to the source shown at ``path_or_url``; reset per-source counters on change."""

        handle = handle_from_path(path_or_url)
        if handle != self.handle:
            with self._lock:
                self.handle = handle
                self._processed_ids.clear()
                self.indexed_count = self.store.indexed_count(handle) if handle else 0
                self.display_name = None
                self.avatar_url = None
            self.logger.info("source_observed", source=handle, path=path_or_url)
            self.broadcast()
        return handle

    @property
    def processed_count(self) -> int:
        return len(self._processed_ids)

    def scan(self, html: str | None = None) -> int:
        """Ingest items rendered in ``html`` that were not yet seen in this context."""

        handle = self.handle
        if not handle:
            return 0
        if html is None:
            if self.html_source is None:
                return 0
            html = self.html_source()
        self._refresh_profile(html, handle)
        fresh: list[Item] = []
        with self._lock:
            for item in parse_items_from_html(html, handle):
                if item.id not in self._processed_ids:
                    self._processed_ids.add(item.id)
                    fresh.append(item)
        if fresh:
            self.store_batch(fresh, handle, self.display_name, self.avatar_url)
        return len(fresh)

    def _refresh_profile(self, html: str, handle: str) -> None:
        if self.display_name and self.avatar_url:
            return
        display_name, avatar_url = extract_source_profile(html, handle)
        self.display_name = self.display_name or display_name
        self.avatar_url = self.avatar_url or avatar_url

    def store_batch(
        self,
        items: Iterable[Item],
        handle: str | None,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> IngestResponse:
        """Ingestion boundary: persist a batch and refresh the source rollup."""

        new_count = self.store.ingest(items)
        indexed_count = 0
        if handle:
            self.store.recompute_summary(handle, display_name, avatar_url)
            indexed_count = self.store.indexed_count(handle)
            if handle == self.handle:
                self.indexed_count = indexed_count
        self.logger.info(
            "batch_stored", source=handle, new_count=new_count, indexed_count=indexed_count
        )
        self.broadcast()
        return IngestResponse(new_count=new_count, indexed_count=indexed_count)

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            handle=self.handle,
            indexed_count=self.indexed_count,
            processed_count=self.processed_count,
        )

    def broadcast(self) -> None:
        self.snapshots.publish(self.snapshot())

    # ------------------------------------------------------------------
    # Command boundary
    # ------------------------------------------------------------------
    def command(self, name: str) -> dict[str, Any]:
        if name not in COMMANDS:
            raise ValueError(f"Unknown command: {name}")
        if name == "get-state":
            return {"handle": self.handle, "indexed_count": self.indexed_count}
        if self.session is None:
            raise RuntimeError("No scroll host attached to this coordinator")

        handle = self.handle
        if name == "start":
            if not handle:
                return {"ok": False}
            self.store.set_sync_status(handle, SyncStatus.INDEXING)
            self.session.start(lambda _visible: self.scan(), self._on_scroll_status)
        elif name == "pause":
            self.session.pause()
            if handle:
                self.store.set_sync_status(handle, SyncStatus.PAUSED)
        elif name == "resume":
            self.session.resume()
            if handle:
                self.store.set_sync_status(handle, SyncStatus.INDEXING)
        else:
            self.session.stop()
            if handle:
                self.store.set_sync_status(handle, SyncStatus.IDLE)
        return {"ok": True}

    def run(self) -> ScrollState:
        """Index the observed source in the calling thread until the feed is exhausted."""

        handle = self.handle
        if not handle:
            raise ValueError("No source is being observed")
        if self.session is None:
            raise RuntimeError("No scroll host attached to this coordinator")
        self.store.set_sync_status(handle, SyncStatus.INDEXING)
        self.scan()
        try:
            state = self.session.run(lambda _visible: self.scan(), self._on_scroll_status)
        except KeyboardInterrupt:
            self.command("stop")
            raise
        if state is not ScrollState.COMPLETE:
            self.store.set_sync_status(handle, SyncStatus.IDLE)
        return state

    def _on_scroll_status(self, state: ScrollState) -> None:
        if state is ScrollState.COMPLETE and self.handle:
            self.store.set_sync_status(self.handle, SyncStatus.COMPLETE)
        self.broadcast()

    # ------------------------------------------------------------------
    # Message dispatch
    # ------------------------------------------------------------------
    def handle_message(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """Answer one control-surface message; failures become ``{"error": ...}``."""

        try:
            return self._dispatch(message)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("message_failed", type=message.get("type"), error=str(exc))
            return {"error": str(exc)}

    def _dispatch(self, message: dict[str, Any]) -> dict[str, Any] | None:
        kind = message.get("type")
        handle = message.get("handle")
        if kind == "store-items":
            items = [Item.from_payload(raw, handle) for raw in message.get("items") or []]
            response = self.store_batch(
                items, handle, message.get("display_name"), message.get("avatar_url")
            )
            return response.to_dict()
        if kind == "set-sync-status":
            self.store.set_sync_status(handle, message["status"])
            return {"ok": True}
        if kind == "get-indexed-count":
            return {"count": self.store.indexed_count(handle)}
        if kind == "search":
            query = SearchQuery.model_validate(message.get("options") or {})
            return {"results": [result.to_dict() for result in self.search_engine.search(query)]}
        if kind == "get-sources":
            return {"sources": [summary.to_dict() for summary in self.search_engine.list_sources()]}
        if kind == "get-stats":
            return {"stats": asdict(self.store.stats())}
        if kind == "delete-source":
            self.store.purge(handle)
            return {"ok": True}
        if kind == "update-source-info":
            self.store.recompute_summary(
                handle, message.get("display_name"), message.get("avatar_url")
            )
            return {"ok": True}
        if kind == "command":
            return self.command(message["command"])
        return None


__all__ = ["COMMANDS", "Coordinator", "IngestResponse", "StateSnapshot"]
