"""Watchlist glue -- keeps the persisted watchlist and the aggregator in sync.

The store owns WatchEntry records; the aggregator only ever sees the derived
set of active instruments. Save failures are logged and not surfaced, and
the in-memory aggregator change is not rolled back, so the two may diverge
until the next start_streaming() reloads from the store.
"""

from collections.abc import Awaitable, Iterable, Sequence

from forex.exceptions import WatchlistStoreError
from forex.logging import get_logger
from forex.models import Instrument, WatchEntry
from forex.storage.store import WatchlistStore
from forex.streaming.aggregator import RateAggregator
from forex.streaming.registry import WatchRegistry

logger = get_logger(__name__)


def move_items(items: Sequence, source: Iterable[int], destination: int) -> list:
    """Return ``items`` with the elements at ``source`` moved before ``destination``.

    ``destination`` is an index into the original list (``len(items)`` moves
    to the end). Moved elements keep their relative order.

    Raises ValueError for out-of-range indices.
    """
    indices = set(source)
    if any(i < 0 or i >= len(items) for i in indices):
        raise ValueError(f"source index out of range for {len(items)} items")
    if destination < 0 or destination > len(items):
        raise ValueError(f"destination {destination} out of range for {len(items)} items")

    moving = [items[i] for i in sorted(indices)]
    remaining = [item for i, item in enumerate(items) if i not in indices]
    insert_at = destination - sum(1 for i in indices if i < destination)
    return remaining[:insert_at] + moving + remaining[insert_at:]


class WatchlistService:
    """Add, delete, reorder and toggle watchlist entries."""

    def __init__(self, store: WatchlistStore, aggregator: RateAggregator) -> None:
        self._store = store
        self._aggregator = aggregator

    async def list_entries(self) -> list[WatchEntry]:
        return await self._store.list_entries()

    async def active_instruments(self) -> list[Instrument]:
        instruments = []
        for entry in await self._store.list_entries():
            instrument = entry.instrument
            if entry.is_active and instrument is not None and instrument not in instruments:
                instruments.append(instrument)
        return instruments

    async def available_instruments(self) -> list[Instrument]:
        """Supported instruments not yet on the watchlist, in enumeration order."""
        entries = await self._store.list_entries()
        return WatchRegistry.available(
            excluding=[e.instrument for e in entries if e.instrument is not None]
        )

    async def start_streaming(self) -> None:
        """(Re)start the aggregator from the persisted active entries."""
        await self._aggregator.start(await self.active_instruments())

    async def add_instruments(self, instruments: Iterable[Instrument]) -> list[WatchEntry]:
        """Append new entries for ``instruments`` not already on the watchlist."""
        entries = await self._store.list_entries()
        existing = {e.instrument for e in entries}

        new_instruments: list[Instrument] = []
        for instrument in instruments:
            if instrument not in existing and instrument not in new_instruments:
                new_instruments.append(instrument)
        if not new_instruments:
            return []

        next_order = await self._store.next_order()
        created = [
            WatchEntry.for_instrument(instrument, order=next_order + index)
            for index, instrument in enumerate(new_instruments)
        ]

        if self._aggregator.is_streaming:
            for instrument in new_instruments:
                self._aggregator.add_instrument(instrument)
        else:
            await self._aggregator.start(
                [*self._aggregator.registry.watched(), *new_instruments]
            )

        await self._save("add", self._store.insert_entries(created))
        logger.info("watchlist_entries_added", pairs=[i.value for i in new_instruments])
        return created

    async def delete_entries(self, entry_ids: Iterable[str]) -> list[WatchEntry]:
        """Delete entries by id. Returns the entries that existed."""
        wanted = set(entry_ids)
        removed = [e for e in await self._store.list_entries() if e.id in wanted]
        if not removed:
            return []

        for entry in removed:
            if entry.instrument is not None:
                self._aggregator.remove_instrument(entry.instrument)
        if not self._aggregator.registry and self._aggregator.is_streaming:
            await self._aggregator.stop()

        await self._save("delete", self._store.delete_entries(e.id for e in removed))
        logger.info("watchlist_entries_deleted", pairs=[e.pair_string for e in removed])
        return removed

    async def move_entries(self, source: Iterable[int], destination: int) -> list[WatchEntry]:
        """Reorder entries; every entry's order becomes its new list index."""
        entries = await self._store.list_entries()
        reordered = move_items(entries, source, destination)
        for index, entry in enumerate(reordered):
            entry.order = index

        await self._save("reorder", self._store.update_orders({e.id: e.order for e in reordered}))
        return reordered

    async def set_active(self, entry_id: str, active: bool) -> WatchEntry | None:
        """Toggle whether an entry is polled. Returns None for an unknown id."""
        entry = await self._store.get_entry(entry_id)
        if entry is None:
            return None

        entry.is_active = active
        instrument = entry.instrument
        if instrument is not None:
            if active:
                if self._aggregator.is_streaming:
                    self._aggregator.add_instrument(instrument)
                else:
                    await self._aggregator.start([*self._aggregator.registry.watched(), instrument])
            else:
                self._aggregator.remove_instrument(instrument)
                if not self._aggregator.registry and self._aggregator.is_streaming:
                    await self._aggregator.stop()

        await self._save("set_active", self._store.set_active(entry_id, active))
        return entry

    async def _save(self, operation: str, action: Awaitable[object]) -> bool:
        try:
            await action
        except WatchlistStoreError:
            logger.error("watchlist_save_failed", operation=operation, exc_info=True)
            return False
        return True
