"""Watchlist persistence layer -- SQLite database management and typed store."""

from forex.storage.database import WatchlistDatabase
from forex.storage.store import WatchlistStore

__all__ = ["WatchlistDatabase", "WatchlistStore"]
