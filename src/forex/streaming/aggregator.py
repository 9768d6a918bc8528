"""Rate aggregator -- keeps the RateTable fresh for every watched instrument.

Uses REST polling on a fixed interval. Each cycle fans out one fetch per
watched instrument with asyncio.gather; a failed fetch is logged and simply
leaves its instrument without a fresh quote, it never cancels the others or
stops the timer.

Timer model: one owned asyncio.Task sleeps for the poll interval and, on
each tick, schedules the cycle as a detached task so the timer itself never
blocks. A tick that finds the previous cycle still in flight is skipped
(the fetch timeout can exceed the poll interval).

Each start() opens a new generation. Only a cycle of the current generation
settles the loading flag and the aggregate error, so a cycle left over from
before a restart cannot end the loading state of the new watched set.

Subscribers are notified from their own tasks, after the cycle lock is
released; a slow subscriber delays nobody but itself.

All shared state is mutated on the event loop only, with no await between
reading and writing a field.
"""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from forex.exceptions import QuoteServiceError, UnknownQuoteError
from forex.logging import get_logger
from forex.models import ConnectivityState, Instrument, Quote, RateSnapshot
from forex.quotes.client import QuoteClient
from forex.streaming.monitor import ConnectionMonitor
from forex.streaming.rate_table import RateTable
from forex.streaming.registry import WatchRegistry

logger = get_logger(__name__)

UNABLE_TO_FETCH_MESSAGE = "Unable to fetch forex data"

Subscriber = Callable[[RateSnapshot], Awaitable[None]]


@dataclass
class FetchOutcome:
    """Result of one instrument fetch inside a cycle."""

    instrument: Instrument
    quote: Quote | None = None
    error: QuoteServiceError | None = None
    applied: bool = False

    @property
    def status_code(self) -> int | None:
        if self.quote is not None:
            return 200
        return self.error.status_code if self.error is not None else None


def parse_source_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 source timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class RateAggregator:
    """Polls quotes for the watched set and merges them into a RateTable.

    The presentation layer reads state through snapshot() or registers an
    async callback with subscribe(); callbacks receive a RateSnapshot after
    every cycle, add, remove, start and stop.
    """

    def __init__(
        self,
        client: QuoteClient,
        poll_interval: float = 5.0,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._rate_table = RateTable()
        self._registry = WatchRegistry(self._rate_table)
        self._monitor = monitor or ConnectionMonitor()

        self._timer: asyncio.Task | None = None  # type: ignore[type-arg]
        self._tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._cycle_lock = asyncio.Lock()
        self._generation = 0
        self._subscribers: list[Subscriber] = []

        self._last_updated: datetime | None = None
        self._is_loading = False
        self._error_message: str | None = None

    # ──────────────────────────────────────────────
    # State accessors
    # ──────────────────────────────────────────────

    @property
    def registry(self) -> WatchRegistry:
        return self._registry

    @property
    def rate_table(self) -> RateTable:
        return self._rate_table

    @property
    def rates(self) -> dict[str, Quote]:
        return self._rate_table.as_dict()

    @property
    def connectivity(self) -> ConnectivityState:
        return self._monitor.state

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def is_streaming(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def snapshot(self) -> RateSnapshot:
        return RateSnapshot(
            rates=self._rate_table.as_dict(),
            watched=self._registry.watched(),
            connectivity=self._monitor.state,
            last_updated=self._last_updated,
            is_loading=self._is_loading,
            error_message=self._error_message,
            is_streaming=self.is_streaming,
        )

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self, instruments: Iterable[Instrument]) -> None:
        """Begin (or restart) streaming for ``instruments``.

        Any running timer is cancelled first so at most one timer exists.
        An empty set creates no timer and does not enter the loading state.
        """
        watched = list(instruments)
        restarted = self._cancel_timer()
        self._generation += 1
        self._registry.set_watched(watched)

        if not watched:
            self._is_loading = False
            self._error_message = None
            logger.info("streaming_not_started_empty_watchlist", restarted=restarted)
            if restarted:
                self._publish()
            return

        self._is_loading = True
        self._error_message = None
        self._timer = asyncio.create_task(self._timer_loop())
        self._spawn(self._run_cycle(self._generation))

        logger.info(
            "streaming_started",
            pairs=[i.value for i in self._registry.watched()],
            poll_interval=self._poll_interval,
            restarted=restarted,
            generation=self._generation,
        )
        self._publish()

    async def stop(self) -> None:
        """Cancel the timer. Cached rates stay visible; in-flight fetches may finish."""
        self._cancel_timer()
        self._is_loading = False
        logger.info("streaming_stopped", cached=len(self._rate_table))
        self._publish()

    async def refresh(self) -> None:
        """Run one cycle now, leaving the recurring timer untouched."""
        if not self._registry:
            return
        await self._run_cycle(self._generation)

    async def drain(self) -> None:
        """Wait for every detached cycle, fetch and notification task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop streaming and wait for in-flight work."""
        await self.stop()
        await self.drain()

    # ──────────────────────────────────────────────
    # Watched set mutation
    # ──────────────────────────────────────────────

    def add_instrument(self, instrument: Instrument) -> asyncio.Task | None:  # type: ignore[type-arg]
        """Watch ``instrument`` and fetch its quote immediately.

        Returns the fetch task, or None if the instrument was already watched.
        """
        if not self._registry.add(instrument):
            logger.debug("instrument_already_watched", pair=instrument.value)
            return None
        logger.info("instrument_added", pair=instrument.value)
        return self._spawn(self._fetch_single(instrument))

    def remove_instrument(self, instrument: Instrument) -> None:
        """Stop watching ``instrument`` and evict its rate, without a network call."""
        self._registry.remove(instrument)
        logger.info("instrument_removed", pair=instrument.value)
        self._publish()

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:  # type: ignore[type-arg]
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._on_tick()

    def _on_tick(self) -> None:
        if self._cycle_lock.locked():
            logger.warning("tick_skipped_cycle_in_flight", poll_interval=self._poll_interval)
            return
        self._spawn(self._run_cycle(self._generation))

    async def _run_cycle(self, generation: int) -> None:
        async with self._cycle_lock:
            await self._fetch_all(generation)
        self._publish()

    async def _fetch_all(self, generation: int) -> None:
        current = generation == self._generation
        instruments = self._registry.watched()
        if not instruments:
            if current:
                self._is_loading = False
            return

        self._monitor.begin()
        outcomes = await asyncio.gather(*(self._fetch_one(i) for i in instruments))
        self._monitor.resolve(o.status_code for o in outcomes)

        # A restart during the fan-out belongs to the newer generation's first cycle.
        current = generation == self._generation
        if current:
            if len(self._rate_table) > 0 or not self._registry:
                self._error_message = None
            else:
                self._error_message = UNABLE_TO_FETCH_MESSAGE
            self._is_loading = False

        logger.info(
            "cycle_completed",
            requested=len(instruments),
            succeeded=sum(1 for o in outcomes if o.applied),
            dropped=sum(1 for o in outcomes if o.quote is not None and not o.applied),
            failed=[o.instrument.value for o in outcomes if o.error is not None],
            cached=len(self._rate_table),
            connectivity=self._monitor.state.value,
            stale=not current,
        )

    async def _fetch_single(self, instrument: Instrument) -> None:
        # While a cycle is in flight its batch owns the connectivity state.
        if not self._cycle_lock.locked():
            self._monitor.begin()
        outcome = await self._fetch_one(instrument)
        if not self._cycle_lock.locked():
            self._monitor.resolve([outcome.status_code])
        if len(self._rate_table) > 0:
            self._error_message = None
        self._publish()

    async def _fetch_one(self, instrument: Instrument) -> FetchOutcome:
        with structlog.contextvars.bound_contextvars(pair=instrument.value):
            try:
                quote = await self._client.fetch(instrument)
            except QuoteServiceError as e:
                logger.warning(
                    "quote_fetch_failed",
                    kind=e.kind,
                    status_code=e.status_code,
                    error=str(e),
                )
                return FetchOutcome(instrument, error=e)
            except Exception as e:
                logger.warning("quote_fetch_unexpected_error", exc_info=True)
                return FetchOutcome(instrument, error=UnknownQuoteError(e))

            applied = self._apply_quote(instrument, quote)
            return FetchOutcome(instrument, quote=quote, applied=applied)

    def _apply_quote(self, instrument: Instrument, quote: Quote) -> bool:
        if instrument not in self._registry:
            logger.debug("quote_dropped_unwatched")
            return False
        self._rate_table.upsert(instrument, quote)
        self._last_updated = parse_source_timestamp(quote.time_stamp) or datetime.now(UTC)
        return True

    def _publish(self) -> None:
        """Hand the current snapshot to every subscriber, each in its own task."""
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            self._spawn(self._deliver(callback, snapshot))

    async def _deliver(self, callback: Subscriber, snapshot: RateSnapshot) -> None:
        try:
            await callback(snapshot)
        except Exception:
            logger.warning("rate_subscriber_failed", exc_info=True)
