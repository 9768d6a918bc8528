"""WebSocket hub broadcasting rate snapshots to connected clients."""

from __future__ import annotations

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from forex.models import RateSnapshot

log = structlog.get_logger(__name__)

router = APIRouter()


class RateHub:
    """Manages WebSocket connections and pushes snapshot JSON to all of them.

    Sends run concurrently, each bounded by ``send_timeout``; a client that
    errors or stalls past it is dropped.
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.connections: list[WebSocket] = []
        self._send_timeout = send_timeout
        self._last_payload: str | None = None

    async def connect(self, ws: WebSocket) -> None:
        """Accept a connection and send it the latest snapshot, if any."""
        await ws.accept()
        self.connections.append(ws)
        log.info("rates_ws_connected", total=len(self.connections))
        if self._last_payload is not None:
            await self._send(ws, self._last_payload)

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("rates_ws_disconnected", total=len(self.connections))

    async def broadcast(self, text: str) -> None:
        """Send text to all clients, dropping connections that fail or stall."""
        await asyncio.gather(*(self._send(ws, text) for ws in self.connections.copy()))

    async def _send(self, ws: WebSocket, text: str) -> None:
        try:
            await asyncio.wait_for(ws.send_text(text), timeout=self._send_timeout)
        except Exception as e:
            if ws in self.connections:
                self.connections.remove(ws)
            log.warning(
                "rates_ws_send_failed",
                error=type(e).__name__,
                remaining=len(self.connections),
            )

    async def publish_snapshot(self, snapshot: RateSnapshot) -> None:
        """Aggregator subscriber: serialise and broadcast a snapshot."""
        self._last_payload = json.dumps(snapshot.to_dict())
        await self.broadcast(self._last_payload)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for live rate snapshots."""
    hub: RateHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            # Consume messages to keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
