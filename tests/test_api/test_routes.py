"""Tests for the JSON API routes and the rate WebSocket hub.

Requests go through httpx.ASGITransport so the app, the aggregator and the
in-memory aiosqlite store all share the test's event loop.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from forex.api.app import create_app
from forex.api.routes.ws import RateHub
from forex.exceptions import QuotaExceededError, WatchlistStoreError
from forex.models import ConnectivityState, Instrument
from forex.storage.database import WatchlistDatabase
from forex.storage.store import WatchlistStore
from forex.streaming.aggregator import RateAggregator
from forex.watchlist import WatchlistService


@pytest_asyncio.fixture
async def services(mock_client: AsyncMock):
    async with WatchlistDatabase(":memory:") as database:
        store = WatchlistStore(database)
        aggregator = RateAggregator(mock_client, poll_interval=3600.0)
        watchlist = WatchlistService(store, aggregator)
        yield aggregator, watchlist, store
        await aggregator.shutdown()


@pytest_asyncio.fixture
async def client(services):
    aggregator, watchlist, _ = services
    app = create_app()
    app.state.aggregator = aggregator
    app.state.watchlist = watchlist
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


# ---------------------------------------------------------------------------
# Read-only endpoints
# ---------------------------------------------------------------------------


class TestReadRoutes:
    """Snapshots, status and the instrument catalogue."""

    @pytest.mark.asyncio
    async def test_rates_before_start(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/rates")
        assert response.status_code == 200
        body = response.json()
        assert body["rates"] == {}
        assert body["connectivity"] == "disconnected"
        assert body["is_streaming"] is False

    @pytest.mark.asyncio
    async def test_rates_after_add(self, client: httpx.AsyncClient, services) -> None:
        aggregator, _, _ = services
        await client.post("/api/watchlist", json={"pairs": ["USD/JPY"]})
        await aggregator.drain()

        body = (await client.get("/api/rates")).json()

        assert set(body["rates"]) == {"USD/JPY"}
        assert body["connectivity"] == ConnectivityState.CONNECTED.value
        assert body["is_streaming"] is True

    @pytest.mark.asyncio
    async def test_status(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/api/status")).json()
        assert body == {
            "connectivity": "disconnected",
            "is_streaming": False,
            "is_loading": False,
            "error_message": None,
            "last_updated": None,
            "watched_count": 0,
        }

    @pytest.mark.asyncio
    async def test_instruments_in_enumeration_order(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/api/instruments")).json()
        assert [item["pair"] for item in body] == [i.value for i in Instrument]
        assert body[0] == {"pair": "USD/JPY", "base": "USD", "quote": "JPY"}

    @pytest.mark.asyncio
    async def test_available_excludes_watchlist(
        self, client: httpx.AsyncClient, services
    ) -> None:
        aggregator, _, _ = services
        await client.post("/api/watchlist", json={"pairs": ["EUR/USD"]})
        await aggregator.drain()

        body = (await client.get("/api/instruments/available")).json()

        assert "EUR/USD" not in body
        assert len(body) == len(Instrument) - 1


# ---------------------------------------------------------------------------
# Watchlist mutations
# ---------------------------------------------------------------------------


class TestWatchlistRoutes:
    """Add, delete, move and toggle through the API."""

    @pytest.mark.asyncio
    async def test_add_returns_created_entries(
        self, client: httpx.AsyncClient, services
    ) -> None:
        aggregator, _, _ = services
        response = await client.post("/api/watchlist", json={"pairs": ["USD/JPY", "EUR/USD"]})
        await aggregator.drain()

        assert response.status_code == 201
        body = response.json()
        assert [e["pair_string"] for e in body] == ["USD/JPY", "EUR/USD"]
        assert [e["order"] for e in body] == [0, 1]

        listed = (await client.get("/api/watchlist")).json()
        assert [e["id"] for e in listed] == [e["id"] for e in body]

    @pytest.mark.asyncio
    async def test_add_unknown_pair(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/watchlist", json={"pairs": ["XAU/USD"]})
        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.parametrize("payload", [{}, {"pairs": []}, {"pairs": "USD/JPY"}, []])
    @pytest.mark.asyncio
    async def test_add_missing_pairs(self, client: httpx.AsyncClient, payload: object) -> None:
        response = await client.post("/api/watchlist", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_add_invalid_json(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/watchlist",
            content=b"not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    @pytest.mark.asyncio
    async def test_add_store_unavailable(self, client: httpx.AsyncClient, services) -> None:
        _, _, store = services
        store.list_entries = AsyncMock(side_effect=WatchlistStoreError("closed"))  # type: ignore[method-assign]

        response = await client.post("/api/watchlist", json={"pairs": ["USD/JPY"]})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_delete(self, client: httpx.AsyncClient, services) -> None:
        aggregator, _, _ = services
        created = (await client.post("/api/watchlist", json={"pairs": ["USD/JPY"]})).json()
        await aggregator.drain()

        response = await client.delete(f"/api/watchlist/{created[0]['id']}")
        await aggregator.drain()

        assert response.status_code == 200
        assert response.json()["pair_string"] == "USD/JPY"
        assert (await client.get("/api/watchlist")).json() == []
        assert aggregator.rates == {}
        assert aggregator.is_streaming is False

    @pytest.mark.asyncio
    async def test_delete_unknown(self, client: httpx.AsyncClient) -> None:
        response = await client.delete("/api/watchlist/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_move(self, client: httpx.AsyncClient, services) -> None:
        aggregator, _, _ = services
        await client.post("/api/watchlist", json={"pairs": ["USD/JPY", "EUR/USD", "GBP/USD"]})
        await aggregator.drain()

        response = await client.post("/api/watchlist/move", json={"source": [2], "destination": 0})

        assert response.status_code == 200
        assert [e["pair_string"] for e in response.json()] == ["GBP/USD", "USD/JPY", "EUR/USD"]
        listed = (await client.get("/api/watchlist")).json()
        assert [e["order"] for e in listed] == [0, 1, 2]

    @pytest.mark.parametrize(
        "payload",
        [
            {"source": [5], "destination": 0},
            {"source": "0", "destination": 0},
            {"source": [0]},
            {"source": [0], "destination": "1"},
        ],
    )
    @pytest.mark.asyncio
    async def test_move_bad_input(self, client: httpx.AsyncClient, payload: dict) -> None:
        response = await client.post("/api/watchlist/move", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_set_active(self, client: httpx.AsyncClient, services) -> None:
        aggregator, _, _ = services
        created = (await client.post("/api/watchlist", json={"pairs": ["USD/JPY", "EUR/USD"]})).json()
        await aggregator.drain()

        response = await client.post(
            f"/api/watchlist/{created[0]['id']}/active", json={"active": False}
        )
        await aggregator.drain()

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert aggregator.registry.watched() == [Instrument.EURUSD]

    @pytest.mark.asyncio
    async def test_set_active_requires_bool(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/watchlist/any/active", json={"active": "no"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_set_active_unknown(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/watchlist/missing/active", json={"active": True})
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefreshRoute:
    """Manual refresh runs one cycle and returns the snapshot."""

    @pytest.mark.asyncio
    async def test_refresh_empty_watchlist(
        self, client: httpx.AsyncClient, mock_client: AsyncMock
    ) -> None:
        response = await client.post("/api/refresh")
        assert response.status_code == 200
        mock_client.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_reports_failure(
        self, client: httpx.AsyncClient, services, mock_client: AsyncMock
    ) -> None:
        aggregator, _, _ = services
        mock_client.fetch.side_effect = QuotaExceededError()
        await client.post("/api/watchlist", json={"pairs": ["USD/JPY"]})
        await aggregator.drain()

        body = (await client.post("/api/refresh")).json()

        assert body["rates"] == {}
        assert body["connectivity"] == "disconnected"
        assert body["error_message"] == "Unable to fetch forex data"


# ---------------------------------------------------------------------------
# RateHub
# ---------------------------------------------------------------------------


def _socket() -> AsyncMock:
    ws = AsyncMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


class TestRateHub:
    """Connection bookkeeping and snapshot broadcast."""

    @pytest.mark.asyncio
    async def test_publish_broadcasts_json(self, mock_client: AsyncMock) -> None:
        hub = RateHub()
        ws = _socket()
        await hub.connect(ws)

        aggregator = RateAggregator(mock_client, poll_interval=3600.0)
        await hub.publish_snapshot(aggregator.snapshot())

        ws.accept.assert_awaited_once()
        payload = json.loads(ws.send_text.await_args.args[0])
        assert payload["connectivity"] == "disconnected"
        assert payload["rates"] == {}

    @pytest.mark.asyncio
    async def test_new_client_gets_last_snapshot(self, mock_client: AsyncMock) -> None:
        hub = RateHub()
        aggregator = RateAggregator(mock_client, poll_interval=3600.0)
        await hub.publish_snapshot(aggregator.snapshot())

        ws = _socket()
        await hub.connect(ws)

        ws.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_send_drops_connection(self) -> None:
        hub = RateHub()
        good, bad = _socket(), _socket()
        bad.send_text.side_effect = RuntimeError("closed")
        await hub.connect(good)
        await hub.connect(bad)

        await hub.broadcast("{}")

        assert hub.connections == [good]
        good.send_text.assert_awaited_once_with("{}")

    @pytest.mark.asyncio
    async def test_stalled_send_is_dropped_after_timeout(self) -> None:
        hub = RateHub(send_timeout=0.05)
        good, stalled = _socket(), _socket()
        never = asyncio.Event()

        async def hang(text: str) -> None:
            await never.wait()

        stalled.send_text.side_effect = hang
        await hub.connect(good)
        await hub.connect(stalled)

        await asyncio.wait_for(hub.broadcast("{}"), timeout=1.0)

        assert hub.connections == [good]
        good.send_text.assert_awaited_once_with("{}")

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self) -> None:
        hub = RateHub()
        ws = _socket()
        await hub.connect(ws)
        hub.disconnect(ws)
        hub.disconnect(ws)
        assert hub.connections == []

    @pytest.mark.asyncio
    async def test_aggregator_subscription(self, mock_client: AsyncMock) -> None:
        hub = RateHub()
        ws = _socket()
        await hub.connect(ws)
        aggregator = RateAggregator(mock_client, poll_interval=3600.0)
        aggregator.subscribe(hub.publish_snapshot)

        await aggregator.start([Instrument.USDJPY])
        await aggregator.drain()
        await aggregator.shutdown()

        last = json.loads(ws.send_text.await_args.args[0])
        assert "USD/JPY" in last["rates"]
        assert last["is_streaming"] is False
