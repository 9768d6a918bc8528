"""Shared data models for the forex watchlist service.

CRITICAL: All monetary values use Decimal. Never use float for bids, asks or prices.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from forex.exceptions import UnknownInstrumentError


class Currency(str, Enum):
    """Supported currency codes."""

    USD = "USD"
    JPY = "JPY"
    EUR = "EUR"
    GBP = "GBP"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    CNY = "CNY"


class Instrument(str, Enum):
    """Supported currency pairs, in display/enumeration order.

    Every value has the form BASE/QUOTE where both sides are Currency codes.
    """

    USDJPY = "USD/JPY"
    EURUSD = "EUR/USD"
    GBPUSD = "GBP/USD"
    AUDUSD = "AUD/USD"
    USDCAD = "USD/CAD"
    USDCHF = "USD/CHF"
    USDCNY = "USD/CNY"
    EURJPY = "EUR/JPY"
    GBPJPY = "GBP/JPY"

    @property
    def base(self) -> Currency:
        return Currency(self.value.split("/")[0])

    @property
    def quote(self) -> Currency:
        return Currency(self.value.split("/")[1])

    @property
    def api_symbol(self) -> str:
        """Identifier as the quote source expects it (e.g. "USDJPY")."""
        return self.value.replace("/", "")

    @classmethod
    def parse(cls, identifier: str) -> "Instrument | None":
        """Return the instrument for ``identifier``, or None if unsupported."""
        try:
            return cls(identifier)
        except ValueError:
            return None

    @classmethod
    def from_identifier(cls, identifier: str) -> "Instrument":
        """Like parse(), but raise UnknownInstrumentError for unsupported values."""
        instrument = cls.parse(identifier)
        if instrument is None:
            raise UnknownInstrumentError(f"Unsupported instrument: {identifier!r}")
        return instrument


class ConnectivityState(str, Enum):
    """Health of the link to the quote source."""

    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Quote:
    """Point-in-time bid/ask/price snapshot for one instrument.

    Derived values are properties so they can never go stale.
    """

    base: str
    quote: str
    bid: Decimal
    ask: Decimal
    price: Decimal
    time_stamp: str = ""

    @property
    def pair(self) -> str:
        return f"{self.base}/{self.quote}"

    @property
    def spread(self) -> Decimal:
        return self.ask - self.bid

    @property
    def spread_percentage(self) -> Decimal:
        """Spread as a percentage of the mid price (0 when price is 0)."""
        if self.price == 0:
            return Decimal("0")
        return self.spread / self.price * 100

    def to_dict(self) -> dict:
        return {
            "pair": self.pair,
            "from": self.base,
            "to": self.quote,
            "bid": str(self.bid),
            "ask": str(self.ask),
            "price": str(self.price),
            "spread": str(self.spread),
            "spread_percentage": str(self.spread_percentage),
            "time_stamp": self.time_stamp,
        }


def _new_entry_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class WatchEntry:
    """A persisted watchlist row.

    ``pair_string`` is stored as-is; ``instrument`` is None when the stored
    identifier is no longer part of the supported set.
    """

    pair_string: str
    order: int = 0
    is_active: bool = True
    id: str = field(default_factory=_new_entry_id)
    date_added: datetime = field(default_factory=_utc_now)

    @classmethod
    def for_instrument(cls, instrument: Instrument, order: int = 0) -> "WatchEntry":
        return cls(pair_string=instrument.value, order=order)

    @property
    def instrument(self) -> Instrument | None:
        return Instrument.parse(self.pair_string)

    @property
    def base_currency(self) -> Currency | None:
        instrument = self.instrument
        return instrument.base if instrument is not None else None

    @property
    def quote_currency(self) -> Currency | None:
        instrument = self.instrument
        return instrument.quote if instrument is not None else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pair_string": self.pair_string,
            "is_active": self.is_active,
            "order": self.order,
            "date_added": self.date_added.isoformat(),
        }


@dataclass(frozen=True)
class RateSnapshot:
    """Immutable view of the aggregator state handed to subscribers."""

    rates: dict[str, Quote]
    watched: list[Instrument]
    connectivity: ConnectivityState
    last_updated: datetime | None
    is_loading: bool
    error_message: str | None
    is_streaming: bool

    def to_dict(self) -> dict:
        return {
            "rates": {pair: q.to_dict() for pair, q in self.rates.items()},
            "watched": [i.value for i in self.watched],
            "connectivity": self.connectivity.value,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "is_loading": self.is_loading,
            "error_message": self.error_message,
            "is_streaming": self.is_streaming,
        }
