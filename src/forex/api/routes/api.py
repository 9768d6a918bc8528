"""JSON API endpoints for rates, connectivity and watchlist management."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from forex.exceptions import UnknownInstrumentError, WatchlistStoreError
from forex.models import Instrument

log = structlog.get_logger(__name__)

router = APIRouter()


async def _read_json(request: Request) -> tuple[object, JSONResponse | None]:
    try:
        return await request.json(), None
    except Exception:
        return None, JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)


@router.get("/rates")
async def get_rates(request: Request) -> JSONResponse:
    """Current aggregator snapshot: rates, watched set, connectivity and flags."""
    aggregator = request.app.state.aggregator
    return JSONResponse(content=aggregator.snapshot().to_dict())


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    aggregator = request.app.state.aggregator
    last_updated = aggregator.last_updated
    return JSONResponse(content={
        "connectivity": aggregator.connectivity.value,
        "is_streaming": aggregator.is_streaming,
        "is_loading": aggregator.is_loading,
        "error_message": aggregator.error_message,
        "last_updated": last_updated.isoformat() if last_updated else None,
        "watched_count": len(aggregator.registry),
    })


@router.get("/instruments")
async def get_instruments() -> JSONResponse:
    """All supported instruments in enumeration order."""
    return JSONResponse(content=[
        {"pair": i.value, "base": i.base.value, "quote": i.quote.value}
        for i in Instrument
    ])


@router.get("/instruments/available")
async def get_available_instruments(request: Request) -> JSONResponse:
    """Supported instruments that are not on the watchlist yet."""
    watchlist = request.app.state.watchlist
    available = await watchlist.available_instruments()
    return JSONResponse(content=[i.value for i in available])


@router.get("/watchlist")
async def get_watchlist(request: Request) -> JSONResponse:
    watchlist = request.app.state.watchlist
    entries = await watchlist.list_entries()
    return JSONResponse(content=[e.to_dict() for e in entries])


@router.post("/watchlist")
async def add_to_watchlist(request: Request) -> JSONResponse:
    """Add instruments. Body: {"pairs": ["USD/JPY", ...]}."""
    body, error = await _read_json(request)
    if error is not None:
        return error

    pairs = body.get("pairs") if isinstance(body, dict) else None
    if not isinstance(pairs, list) or not pairs:
        return JSONResponse(
            content={"error": "Missing required field: pairs"}, status_code=400
        )

    try:
        instruments = [Instrument.from_identifier(str(pair)) for pair in pairs]
    except UnknownInstrumentError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)

    watchlist = request.app.state.watchlist
    try:
        created = await watchlist.add_instruments(instruments)
    except WatchlistStoreError as e:
        log.error("watchlist_add_failed", error=str(e))
        return JSONResponse(content={"error": "Watchlist unavailable"}, status_code=503)

    return JSONResponse(content=[e.to_dict() for e in created], status_code=201)


@router.delete("/watchlist/{entry_id}")
async def delete_from_watchlist(entry_id: str, request: Request) -> JSONResponse:
    watchlist = request.app.state.watchlist
    try:
        removed = await watchlist.delete_entries([entry_id])
    except WatchlistStoreError as e:
        log.error("watchlist_delete_failed", error=str(e))
        return JSONResponse(content={"error": "Watchlist unavailable"}, status_code=503)

    if not removed:
        return JSONResponse(
            content={"error": f"No watchlist entry {entry_id}"}, status_code=404
        )
    return JSONResponse(content=removed[0].to_dict())


@router.post("/watchlist/move")
async def move_watchlist_entries(request: Request) -> JSONResponse:
    """Reorder entries. Body: {"source": [indices], "destination": index}."""
    body, error = await _read_json(request)
    if error is not None:
        return error
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)

    source = body.get("source")
    destination = body.get("destination")
    if (
        not isinstance(source, list)
        or not all(isinstance(i, int) for i in source)
        or not isinstance(destination, int)
    ):
        return JSONResponse(
            content={"error": "source must be a list of indices and destination an index"},
            status_code=400,
        )

    watchlist = request.app.state.watchlist
    try:
        reordered = await watchlist.move_entries(source, destination)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    except WatchlistStoreError as e:
        log.error("watchlist_move_failed", error=str(e))
        return JSONResponse(content={"error": "Watchlist unavailable"}, status_code=503)

    return JSONResponse(content=[e.to_dict() for e in reordered])


@router.post("/watchlist/{entry_id}/active")
async def set_watchlist_entry_active(entry_id: str, request: Request) -> JSONResponse:
    """Toggle polling for an entry. Body: {"active": bool}."""
    body, error = await _read_json(request)
    if error is not None:
        return error

    active = body.get("active") if isinstance(body, dict) else None
    if not isinstance(active, bool):
        return JSONResponse(
            content={"error": "Missing required field: active"}, status_code=400
        )

    watchlist = request.app.state.watchlist
    try:
        entry = await watchlist.set_active(entry_id, active)
    except WatchlistStoreError as e:
        log.error("watchlist_toggle_failed", error=str(e))
        return JSONResponse(content={"error": "Watchlist unavailable"}, status_code=503)

    if entry is None:
        return JSONResponse(
            content={"error": f"No watchlist entry {entry_id}"}, status_code=404
        )
    return JSONResponse(content=entry.to_dict())


@router.post("/refresh")
async def refresh_rates(request: Request) -> JSONResponse:
    """Run one fetch cycle now and return the resulting snapshot."""
    aggregator = request.app.state.aggregator
    await aggregator.refresh()
    return JSONResponse(content=aggregator.snapshot().to_dict())
