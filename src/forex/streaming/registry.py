"""Registry of instruments currently being polled."""

from collections.abc import Iterable

from forex.logging import get_logger
from forex.models import Instrument
from forex.streaming.rate_table import RateTable

logger = get_logger(__name__)


class WatchRegistry:
    """Mutable set of watched instruments.

    Removing an instrument (directly or through set_watched) also evicts its
    entry from the shared RateTable.
    """

    def __init__(self, rate_table: RateTable) -> None:
        self._rate_table = rate_table
        self._watched: set[Instrument] = set()

    def set_watched(self, instruments: Iterable[Instrument]) -> None:
        """Replace the tracked set wholesale."""
        new = set(instruments)
        for dropped in self._watched - new:
            self._rate_table.evict(dropped)
        self._watched = new
        logger.debug("watched_set_replaced", count=len(new))

    def add(self, instrument: Instrument) -> bool:
        """Start watching ``instrument``. Returns False if it was already watched."""
        if instrument in self._watched:
            return False
        self._watched.add(instrument)
        return True

    def remove(self, instrument: Instrument) -> bool:
        """Stop watching ``instrument`` and evict its rate.

        Returns False if it was not watched (the rate is evicted regardless).
        """
        self._rate_table.evict(instrument)
        if instrument not in self._watched:
            return False
        self._watched.discard(instrument)
        return True

    def watched(self) -> list[Instrument]:
        """Watched instruments in enumeration order."""
        return [i for i in Instrument if i in self._watched]

    @staticmethod
    def available(excluding: Iterable[Instrument] = ()) -> list[Instrument]:
        """All supported instruments not in ``excluding``, in enumeration order."""
        excluded = set(excluding)
        return [i for i in Instrument if i not in excluded]

    def __contains__(self, instrument: object) -> bool:
        return instrument in self._watched

    def __len__(self) -> int:
        return len(self._watched)

    def __bool__(self) -> bool:
        return bool(self._watched)
