"""Records shared by the store, the search engine and the extractors."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, field_validator, model_validator

from ..config import SortMode

_COUNTERS = ("likes", "reposts", "replies", "views")


class SyncStatus(str, Enum):
    """Per-source indexing state shown to the control surface."""

    IDLE = "idle"
    INDEXING = "indexing"
    PAUSED = "paused"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class Item:
    """A single captured feed entry.

    ``id`` is assigned by the feed and unique across every source. ``timestamp``
    is epoch milliseconds.
    """

    id: str
    source_handle: str
    text: str
    timestamp: int
    likes: int = 0
    reposts: int = 0
    replies: int = 0
    views: int = 0
    has_media: bool = False
    media_urls: tuple[str, ...] = field(default_factory=tuple)
    is_repost: bool = False
    is_quote: bool = False
    quoted_item_id: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Item id cannot be empty")
        for name in _COUNTERS:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if not isinstance(self.media_urls, tuple):
            object.__setattr__(self, "media_urls", tuple(self.media_urls))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], handle: str | None = None) -> "Item":
        """Build an item from an ingestion-boundary record."""

        source_handle = payload.get("source_handle") or handle
        if not source_handle:
            raise ValueError("Item payload is missing source_handle")
        return cls(
            id=str(payload["id"]),
            source_handle=str(source_handle),
            text=str(payload.get("text") or ""),
            timestamp=int(payload["timestamp"]),
            likes=int(payload.get("likes") or 0),
            reposts=int(payload.get("reposts") or 0),
            replies=int(payload.get("replies") or 0),
            views=int(payload.get("views") or 0),
            has_media=bool(payload.get("has_media", False)),
            media_urls=tuple(payload.get("media_urls") or ()),
            is_repost=bool(payload.get("is_repost", False)),
            is_quote=bool(payload.get("is_quote", False)),
            quoted_item_id=payload.get("quoted_item_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["media_urls"] = list(self.media_urls)
        return data


@dataclass(slots=True)
class SourceSummary:
    """Rollup statistics for one source, derived from its stored items."""

    handle: str
    display_name: str
    avatar_url: str
    total_indexed: int
    oldest_timestamp: int
    newest_timestamp: int
    last_sync_at: int
    sync_status: SyncStatus = SyncStatus.IDLE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["sync_status"] = self.sync_status.value
        return data


class SearchQuery(BaseModel):
    """Keyword query with optional filters."""

    query: str = ""
    source_handle: str | None = None
    date_from: int | None = None
    date_to: int | None = None
    media_only: bool = False
    min_likes: int | None = None
    sort_by: SortMode = SortMode.RELEVANCE
    limit: int = 50

    @field_validator("limit")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("limit must be > 0")
        return value

    @field_validator("source_handle", mode="before")
    @classmethod
    def _normalise_handle(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return str(value)

    @model_validator(mode="after")
    def _validate_range(self) -> "SearchQuery":
        if self.date_from is not None and self.date_to is not None and self.date_to < self.date_from:
            raise ValueError("date_to must be >= date_from")
        return self

    def tokens(self) -> list[str]:
        return [token for token in self.query.lower().split() if token]


@dataclass(slots=True)
class SearchResult:
    item: Item
    highlighted_text: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "highlighted_text": self.highlighted_text,
            "score": self.score,
        }


@dataclass(slots=True)
class StoreStats:
    item_count: int
    source_count: int
    estimated_bytes: int


@dataclass(slots=True)
class ProfileStats:
    count: int
    summary: SourceSummary | None


__all__ = [
    "Item",
    "ProfileStats",
    "SearchQuery",
    "SearchResult",
    "SourceSummary",
    "StoreStats",
    "SyncStatus",
]
