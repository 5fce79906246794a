"""Exception types shared across the indexer."""

from __future__ import annotations


class FeedIndexerError(Exception):
    """Base class for failures scoped to a single requested operation."""


class StoreError(FeedIndexerError):
    """Raised when the item store cannot complete a read or write."""


class Cancelled(Exception):
    """A cooperative wait was interrupted by ``stop()``."""


__all__ = ["Cancelled", "FeedIndexerError", "StoreError"]
