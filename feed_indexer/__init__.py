"""Feed-Indexer: scroll a virtualized feed, keep what it shows, search it later."""

__version__ = "0.3.0"
