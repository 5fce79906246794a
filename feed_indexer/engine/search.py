"""Ranked keyword search over the item store."""

from __future__ import annotations

import math
import re
from typing import Iterable

import structlog

from ..config import SortMode
from .models import Item, ProfileStats, SearchQuery, SearchResult, SourceSummary
from .store import ItemStore

MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"


def count_occurrences(text_lower: str, tokens: Iterable[str]) -> int:
    """Count each token's non-overlapping occurrences, scanning left to right."""

    total = 0
    for token in tokens:
        index = text_lower.find(token)
        while index != -1:
            total += 1
            index = text_lower.find(token, index + len(token))
    return total


def score_item(text_lower: str, tokens: list[str], item: Item) -> float:
    """Keyword density first, engagement as a secondary signal."""

    score = 10.0 * count_occurrences(text_lower, tokens)
    score += math.log10(item.likes + 1) * 2
    score += math.log10(item.views + 1)
    return score


def highlight(text: str, tokens: list[str]) -> str:
    """Wrap every case-insensitive token occurrence of ``text`` in match markers."""

    if not tokens:
        return text
    pattern = re.compile("(" + "|".join(re.escape(token) for token in tokens) + ")", re.IGNORECASE)
    return pattern.sub(lambda match: f"{MARK_OPEN}{match.group(1)}{MARK_CLOSE}", text)


class SearchEngine:
    """Read-only query layer; never writes to the store."""

    def __init__(self, store: ItemStore, logger: structlog.BoundLogger | None = None) -> None:
        self.store = store
        self.logger = logger or structlog.get_logger("feed_indexer.search")

    def search(self, query: SearchQuery) -> list[SearchResult]:
        tokens = query.tokens()
        if not tokens:
            return []

        results: list[SearchResult] = []
        for item in self.store.items_for(query.source_handle):
            text_lower = item.text.lower()
            if not all(token in text_lower for token in tokens):
                continue
            if not self._passes_filters(item, query):
                continue
            results.append(
                SearchResult(
                    item=item,
                    highlighted_text=highlight(item.text, tokens),
                    score=score_item(text_lower, tokens, item),
                )
            )

        # list.sort is stable: equal keys keep discovery order
        if query.sort_by is SortMode.NEWEST:
            results.sort(key=lambda result: result.item.timestamp, reverse=True)
        elif query.sort_by is SortMode.OLDEST:
            results.sort(key=lambda result: result.item.timestamp)
        else:
            results.sort(key=lambda result: result.score, reverse=True)

        self.logger.debug(
            "search_completed",
            tokens=tokens,
            source=query.source_handle,
            matched=len(results),
            limit=query.limit,
        )
        return results[: query.limit]

    @staticmethod
    def _passes_filters(item: Item, query: SearchQuery) -> bool:
        if query.date_from is not None and item.timestamp < query.date_from:
            return False
        if query.date_to is not None and item.timestamp > query.date_to:
            return False
        if query.media_only and not item.has_media:
            return False
        if query.min_likes is not None and item.likes < query.min_likes:
            return False
        return True

    def profile_stats(self, handle: str) -> ProfileStats:
        return ProfileStats(
            count=self.store.indexed_count(handle),
            summary=self.store.get_summary(handle),
        )

    def list_sources(self) -> list[SourceSummary]:
        return self.store.list_summaries()


__all__ = ["SearchEngine", "count_occurrences", "highlight", "score_item"]
