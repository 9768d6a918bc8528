"""In-memory table of the latest quote per instrument.

Mutated only from the event loop thread. Every operation completes without
awaiting, so concurrent fetch tasks writing different keys never interleave
mid-update.
"""

from forex.models import Instrument, Quote


class RateTable:
    """Instrument identifier -> most recent Quote.

    Entries never expire; a stale quote stays until overwritten or evicted.
    """

    def __init__(self) -> None:
        self._rates: dict[str, Quote] = {}

    def upsert(self, instrument: Instrument, quote: Quote) -> None:
        self._rates[instrument.value] = quote

    def evict(self, instrument: Instrument) -> bool:
        """Remove the entry for ``instrument``. Returns True if one existed."""
        return self._rates.pop(instrument.value, None) is not None

    def get(self, instrument: Instrument) -> Quote | None:
        return self._rates.get(instrument.value)

    def as_dict(self) -> dict[str, Quote]:
        """Return a shallow copy safe to hand to other components."""
        return dict(self._rates)

    def __contains__(self, instrument: object) -> bool:
        if isinstance(instrument, Instrument):
            return instrument.value in self._rates
        return instrument in self._rates

    def __len__(self) -> int:
        return len(self._rates)
