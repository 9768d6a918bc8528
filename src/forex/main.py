"""Entry point for the forex watchlist service.

Wires all components together, optionally serves the FastAPI app, and starts
streaming for the persisted watchlist. When the server is enabled (default)
the aggregator and the app share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown when running without the server.

Component wiring order (in _build_components):
1. HttpQuoteClient (remote quote source)
2. ConnectionMonitor (connectivity state)
3. RateAggregator (polling + rate table)
4. WatchlistDatabase / WatchlistStore (persistence)
5. WatchlistService (store <-> aggregator glue)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from forex.config import AppSettings
from forex.logging import get_logger, setup_logging
from forex.quotes.http_client import HttpQuoteClient
from forex.storage.database import WatchlistDatabase
from forex.storage.store import WatchlistStore
from forex.streaming.aggregator import RateAggregator
from forex.streaming.monitor import ConnectionMonitor
from forex.watchlist import WatchlistService


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Does NOT open the database or start streaming -- that happens in the
    lifespan (server mode) or run() (headless mode).

    Missing quote-source configuration is reported here, once, as a warning.
    Requests will then fail with InvalidURL / rejected auth rather than the
    process refusing to start.
    """
    logger = get_logger("forex.main")

    missing = settings.quotes.missing_fields()
    if missing:
        logger.warning(
            "quote_service_not_configured",
            missing=missing,
            note="Set FOREX_BASE_URL and FOREX_API_TOKEN. Quote requests will fail.",
        )

    quote_client = HttpQuoteClient(settings.quotes)
    monitor = ConnectionMonitor()
    aggregator = RateAggregator(
        quote_client,
        poll_interval=settings.streaming.poll_interval,
        monitor=monitor,
    )
    database = WatchlistDatabase(settings.storage.db_path)
    store = WatchlistStore(database)
    watchlist = WatchlistService(store, aggregator)

    return {
        "quote_client": quote_client,
        "monitor": monitor,
        "aggregator": aggregator,
        "database": database,
        "store": store,
        "watchlist": watchlist,
    }


async def _start(components: dict[str, Any]) -> None:
    await components["database"].connect()
    await components["watchlist"].start_streaming()


async def _shutdown(components: dict[str, Any]) -> None:
    await components["aggregator"].shutdown()
    await components["quote_client"].close()
    await components["database"].close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, subscribes the WebSocket hub
    to aggregator snapshots, opens the database and starts streaming.

    On shutdown: stops streaming, waits for in-flight fetches, closes the
    quote client and the database.
    """
    logger = get_logger("forex.main")
    components = app.state.components

    app.state.aggregator = components["aggregator"]
    app.state.watchlist = components["watchlist"]
    components["aggregator"].subscribe(app.state.hub.publish_snapshot)

    await _start(components)
    logger.info("lifespan_started")

    yield

    components["aggregator"].unsubscribe(app.state.hub.publish_snapshot)
    await _shutdown(components)
    logger.info("forex_watchlist_stopped")


async def run() -> None:
    """Run the forex watchlist service.

    With SERVER_ENABLED=true (default) the API and WebSocket hub are served by
    uvicorn and the lifespan manages component startup/shutdown. Otherwise the
    aggregator streams headless until SIGINT/SIGTERM.
    """
    settings = AppSettings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("forex.main")

    components = _build_components(settings)

    if settings.server.enabled:
        from forex.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_server",
            host=settings.server.host,
            port=settings.server.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_level="warning",
            log_config=None,
        )
        server = uvicorn.Server(config)
        await server.serve()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("starting_headless", poll_interval=settings.streaming.poll_interval)
    try:
        await _start(components)
        await stop_event.wait()
        logger.info("graceful_shutdown_signal")
    finally:
        await _shutdown(components)
        logger.info("forex_watchlist_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
