"""Custom exceptions for the forex watchlist service.

Quote-source errors and persistence errors live here so the client,
aggregator, store and API layers can share them without circular imports.
"""


class ForexError(Exception):
    """Base exception for all forex watchlist errors."""


class QuoteServiceError(ForexError):
    """Base class for failures of a single quote fetch.

    Each subclass carries a fixed user-facing message and a short ``kind``
    tag used in log events. ``status_code`` is the HTTP status of the
    response that produced the error, or None when no response arrived.
    """

    kind = "quote_service_error"
    message = "Forex service error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message or self.message)
        self.status_code = status_code


class InvalidURLError(QuoteServiceError):
    """Raised when the request URL cannot be built from the configured base URL."""

    kind = "invalid_url"
    message = "Invalid URL"


class NoDataError(QuoteServiceError):
    """Raised when the service answers 200 with an empty quote list."""

    kind = "no_data"
    message = "No data received from forex service"


class InvalidResponseError(QuoteServiceError):
    """Raised when a 200 body is not a well-formed quote list."""

    kind = "invalid_response"
    message = "Invalid response format from forex service"


class QuotaExceededError(QuoteServiceError):
    """Raised on HTTP 429."""

    kind = "quota_exceeded"
    message = "API quota exceeded. Please try again later."


class ServiceUnavailableError(QuoteServiceError):
    """Raised on HTTP 5xx."""

    kind = "service_unavailable"
    message = "Forex service is temporarily unavailable. Please try again later."


class ConnectionFailedError(QuoteServiceError):
    """Raised on transport failures, timeouts and unexpected status codes."""

    kind = "connection_failed"
    message = "Unable to connect to forex service. Please check your internet connection."


class UnknownQuoteError(QuoteServiceError):
    """Wraps any other exception raised while fetching a quote."""

    kind = "unknown"

    def __init__(self, cause: BaseException, *, status_code: int | None = None) -> None:
        super().__init__(str(cause) or type(cause).__name__, status_code=status_code)
        self.cause = cause


class WatchlistStoreError(ForexError):
    """Raised when the watchlist persistence layer fails."""


class UnknownInstrumentError(ForexError, ValueError):
    """Raised when an identifier is not part of the supported instrument set."""
