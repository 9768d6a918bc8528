"""Quote client layer -- REST rates endpoint integration via httpx."""

from forex.quotes.client import QuoteClient
from forex.quotes.http_client import HttpQuoteClient, parse_quote

__all__ = ["HttpQuoteClient", "QuoteClient", "parse_quote"]
