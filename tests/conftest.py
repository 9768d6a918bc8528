"""Shared test fixtures for the forex watchlist service."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from forex.config import AppSettings, QuoteServiceSettings, StreamingSettings
from forex.models import Instrument, Quote
from forex.quotes.client import QuoteClient


def make_quote(
    instrument: Instrument,
    price: str = "1.0",
    bid: str | None = None,
    ask: str | None = None,
    time_stamp: str = "2025-09-08T10:00:00Z",
) -> Quote:
    """Build a Quote for ``instrument`` with a symmetric 0.01 spread by default."""
    mid = Decimal(price)
    return Quote(
        base=instrument.base.value,
        quote=instrument.quote.value,
        bid=Decimal(bid) if bid is not None else mid - Decimal("0.005"),
        ask=Decimal(ask) if ask is not None else mid + Decimal("0.005"),
        price=mid,
        time_stamp=time_stamp,
    )


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (dummy endpoint and token)."""
    return AppSettings(
        log_level="DEBUG",
        quotes=QuoteServiceSettings(
            base_url="https://quotes.test",
            api_token="test-token",  # type: ignore[arg-type]
        ),
        streaming=StreamingSettings(poll_interval=3600.0),
    )


@pytest.fixture
def mock_client() -> AsyncMock:
    """QuoteClient double; tests set fetch.side_effect per scenario."""
    client = AsyncMock(spec=QuoteClient)
    client.fetch.side_effect = lambda instrument: make_quote(instrument)
    return client


@pytest.fixture
def quote_factory():
    """Expose make_quote to test modules (they cannot import conftest directly)."""
    return make_quote
