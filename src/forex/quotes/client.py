"""Abstract quote client interface.

The aggregator depends only on this contract, so tests and alternative
sources can be injected without touching the streaming code.
"""

from abc import ABC, abstractmethod

from forex.models import Instrument, Quote


class QuoteClient(ABC):
    """Abstract base class for quote sources."""

    @abstractmethod
    async def fetch(self, instrument: Instrument) -> Quote:
        """Fetch the latest quote for one instrument.

        Raises a QuoteServiceError subclass on any failure.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...
