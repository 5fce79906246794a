"""User interaction helpers."""

from .progress import IndexingMonitor, ProgressActivity

__all__ = ["IndexingMonitor", "ProgressActivity"]
