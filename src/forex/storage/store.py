"""Typed SQLite read/write abstraction for watchlist entries.

All SQL is isolated behind WatchlistStore. Writes run inside
WatchlistDatabase.transaction(); every driver failure surfaces as
WatchlistStoreError so callers handle one exception type.
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

import aiosqlite

from forex.exceptions import WatchlistStoreError
from forex.logging import get_logger
from forex.models import WatchEntry
from forex.storage.database import WatchlistDatabase

logger = get_logger(__name__)

_SELECT_COLUMNS = "id, pair_string, is_active, sort_order, date_added"


def _row_to_entry(row: aiosqlite.Row) -> WatchEntry:
    date_added = datetime.fromisoformat(row["date_added"])
    if date_added.tzinfo is None:
        date_added = date_added.replace(tzinfo=UTC)
    return WatchEntry(
        id=row["id"],
        pair_string=row["pair_string"],
        is_active=bool(row["is_active"]),
        order=row["sort_order"],
        date_added=date_added,
    )


class WatchlistStore:
    """Async SQLite store for the ordered watchlist.

    Usage:
        async with WatchlistDatabase(":memory:") as database:
            store = WatchlistStore(database)
            await store.insert_entries([WatchEntry.for_instrument(Instrument.USDJPY)])
    """

    def __init__(self, database: WatchlistDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def list_entries(self) -> list[WatchEntry]:
        """Return all entries sorted by display order ascending."""
        try:
            cursor = await self._database.db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM watch_entries "
                "ORDER BY sort_order ASC, date_added ASC"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise WatchlistStoreError(f"Failed to list watchlist entries: {e}") from e
        return [_row_to_entry(row) for row in rows]

    async def get_entry(self, entry_id: str) -> WatchEntry | None:
        try:
            cursor = await self._database.db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM watch_entries WHERE id = ?",
                (entry_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise WatchlistStoreError(f"Failed to read entry {entry_id}: {e}") from e
        return _row_to_entry(row) if row is not None else None

    async def next_order(self) -> int:
        """Return max(order) + 1, or 0 for an empty watchlist."""
        try:
            cursor = await self._database.db.execute(
                "SELECT MAX(sort_order) FROM watch_entries"
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise WatchlistStoreError(f"Failed to read watchlist order: {e}") from e
        if row is None or row[0] is None:
            return 0
        return int(row[0]) + 1

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def insert_entries(self, entries: Iterable[WatchEntry]) -> int:
        """Insert new entries. Returns the number of rows written."""
        data = [
            (
                entry.id,
                entry.pair_string,
                int(entry.is_active),
                entry.order,
                entry.date_added.isoformat(),
            )
            for entry in entries
        ]
        if not data:
            return 0

        async with self._database.transaction() as db:
            await db.executemany(
                "INSERT INTO watch_entries "
                "(id, pair_string, is_active, sort_order, date_added) "
                "VALUES (?, ?, ?, ?, ?)",
                data,
            )

        logger.debug("inserted_watch_entries", count=len(data))
        return len(data)

    async def delete_entries(self, entry_ids: Iterable[str]) -> int:
        """Delete entries by id. Returns the number of rows removed."""
        ids = [(entry_id,) for entry_id in entry_ids]
        if not ids:
            return 0

        async with self._database.transaction() as db:
            cursor = await db.executemany("DELETE FROM watch_entries WHERE id = ?", ids)

        deleted = cursor.rowcount
        logger.debug("deleted_watch_entries", requested=len(ids), deleted=deleted)
        return deleted

    async def update_orders(self, orders: Mapping[str, int]) -> None:
        """Persist new display orders, keyed by entry id. All or nothing."""
        if not orders:
            return
        async with self._database.transaction() as db:
            await db.executemany(
                "UPDATE watch_entries SET sort_order = ? WHERE id = ?",
                [(order, entry_id) for entry_id, order in orders.items()],
            )

    async def set_active(self, entry_id: str, active: bool) -> bool:
        """Set the active flag. Returns False if no entry has ``entry_id``."""
        async with self._database.transaction() as db:
            cursor = await db.execute(
                "UPDATE watch_entries SET is_active = ? WHERE id = ?",
                (int(active), entry_id),
            )
        return cursor.rowcount > 0
