"""Connectivity monitor -- derives a tri-state health signal from fetch outcomes.

Policy: a batch of outcomes resolves to CONNECTED only if at least one of
them was a genuine HTTP 200. Everything else (auth rejection, quota, server
errors, transport and URL failures) resolves to DISCONNECTED.
"""

import time
from collections.abc import Iterable

from forex.logging import get_logger
from forex.models import ConnectivityState

logger = get_logger(__name__)

_AUTH_REJECTED = frozenset({401, 403})


class ConnectionMonitor:
    """Tracks the connectivity state of the quote source.

    Starts DISCONNECTED: there is no separate "never attempted" state.
    """

    def __init__(self) -> None:
        self._state = ConnectivityState.DISCONNECTED
        self._last_status_codes: list[int | None] = []
        self._changed_at: float | None = None

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def last_status_codes(self) -> list[int | None]:
        """HTTP statuses of the most recently resolved batch (None = no response)."""
        return list(self._last_status_codes)

    @property
    def changed_at(self) -> float | None:
        return self._changed_at

    def begin(self) -> None:
        """Mark that requests are about to be issued."""
        self._set_state(ConnectivityState.CONNECTING)

    def resolve(self, status_codes: Iterable[int | None]) -> ConnectivityState:
        """Settle the state from the statuses of a completed batch of requests."""
        codes = list(status_codes)
        self._last_status_codes = codes

        rejected = [code for code in codes if code in _AUTH_REJECTED]
        if rejected:
            logger.warning("auth_rejected", status_codes=rejected)

        if any(code == 200 for code in codes):
            self._set_state(ConnectivityState.CONNECTED)
        else:
            self._set_state(ConnectivityState.DISCONNECTED)
        return self._state

    def _set_state(self, state: ConnectivityState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._changed_at = time.time()
        logger.info("connectivity_changed", previous=previous.value, state=state.value)
