"""HTTP quote client implementation via httpx.

Issues ``GET {base_url}/rates?pair=USDJPY`` with a ``token`` header and maps
the response status onto the QuoteServiceError taxonomy. Connectivity
tracking is left to the caller (see ConnectionMonitor).
"""

from decimal import Decimal, InvalidOperation

import httpx

from forex.config import QuoteServiceSettings
from forex.exceptions import (
    ConnectionFailedError,
    InvalidResponseError,
    InvalidURLError,
    NoDataError,
    QuotaExceededError,
    QuoteServiceError,
    ServiceUnavailableError,
    UnknownQuoteError,
)
from forex.logging import get_logger
from forex.models import Instrument, Quote
from forex.quotes.client import QuoteClient

logger = get_logger(__name__)

_REQUIRED_FIELDS = ("from", "to", "bid", "ask", "price")


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidResponseError()
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise InvalidResponseError() from None
    if not result.is_finite():
        raise InvalidResponseError()
    return result


def parse_quote(record: object) -> Quote:
    """Build a Quote from one record of the rates payload.

    Raises InvalidResponseError if a required field is missing or malformed.
    """
    if not isinstance(record, dict):
        raise InvalidResponseError()
    if any(name not in record for name in _REQUIRED_FIELDS):
        raise InvalidResponseError()

    time_stamp = record.get("time_stamp") or ""
    return Quote(
        base=str(record["from"]),
        quote=str(record["to"]),
        bid=_to_decimal(record["bid"]),
        ask=_to_decimal(record["ask"]),
        price=_to_decimal(record["price"]),
        time_stamp=str(time_stamp),
    )


class HttpQuoteClient(QuoteClient):
    """Quote client for the REST rates endpoint.

    An ``httpx.AsyncClient`` may be injected (tests use one backed by
    ``httpx.MockTransport``); otherwise the client creates and owns one.
    """

    def __init__(
        self,
        settings: QuoteServiceSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)

    def build_url(self, instrument: Instrument) -> httpx.URL:
        """Return the rates URL for ``instrument``.

        Raises InvalidURLError if the configured base URL is empty or is not
        an absolute http(s) URL.
        """
        base_url = self._settings.base_url.strip().rstrip("/")
        if not base_url:
            raise InvalidURLError()
        try:
            url = httpx.URL(f"{base_url}/rates", params={"pair": instrument.api_symbol})
        except (httpx.InvalidURL, ValueError, TypeError):
            raise InvalidURLError() from None
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidURLError()
        return url

    async def fetch(self, instrument: Instrument) -> Quote:
        """Fetch the latest quote for ``instrument``."""
        try:
            url = self.build_url(instrument)
            response = await self._http.get(
                url,
                headers={"token": self._settings.api_token.get_secret_value()},
                timeout=self._settings.timeout_seconds,
            )
            return self._handle_response(response)
        except QuoteServiceError:
            raise
        except (httpx.TimeoutException, httpx.TransportError):
            logger.debug("quote_request_transport_error", pair=instrument.value, exc_info=True)
            raise ConnectionFailedError() from None
        except Exception as e:
            raise UnknownQuoteError(e) from e

    def _handle_response(self, response: httpx.Response) -> Quote:
        status = response.status_code

        if status == 200:
            try:
                payload = response.json()
            except ValueError:
                raise InvalidResponseError(status_code=status) from None
            if not isinstance(payload, list):
                raise InvalidResponseError(status_code=status)
            if not payload:
                raise NoDataError(status_code=status)
            try:
                return parse_quote(payload[0])
            except InvalidResponseError:
                raise InvalidResponseError(status_code=status) from None

        if status == 429:
            raise QuotaExceededError(status_code=status)
        if 500 <= status <= 599:
            raise ServiceUnavailableError(status_code=status)
        raise ConnectionFailedError(status_code=status)

    async def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
            logger.info("quote_client_closed")
