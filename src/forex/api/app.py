"""FastAPI application factory with JSON routes and the rate WebSocket hub."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from forex.api.routes import api, ws
from forex.api.routes.ws import RateHub


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  main.py uses it to wire and start the streaming components.

    Returns:
        Application with a fresh RateHub on ``app.state.hub`` and all routes.
    """
    app = FastAPI(
        title="Forex Watchlist",
        lifespan=lifespan,
    )

    app.state.hub = RateHub()

    app.include_router(api.router, prefix="/api")
    app.include_router(ws.router)

    return app
