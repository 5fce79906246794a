"""Engine components: scroll → extract → store → search."""

from .browser import PlaywrightFeedHost
from .extract import decode_timeline_payload, extract_source_profile, parse_items_from_html
from .models import Item, SearchQuery, SearchResult, SourceSummary, StoreStats, SyncStatus
from .scroll import CancellationToken, ScrollHost, ScrollSession, ScrollState, StatusChannel
from .search import SearchEngine
from .store import ItemStore

__all__ = [
    "CancellationToken",
    "Item",
    "ItemStore",
    "PlaywrightFeedHost",
    "ScrollHost",
    "ScrollSession",
    "ScrollState",
    "SearchEngine",
    "SearchQuery",
    "SearchResult",
    "SourceSummary",
    "StatusChannel",
    "StoreStats",
    "SyncStatus",
    "decode_timeline_payload",
    "extract_source_profile",
    "parse_items_from_html",
]
