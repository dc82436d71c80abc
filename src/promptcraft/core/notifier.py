"""
Rate-limited delivery of state changes to slow consumers (UI, websockets).

The store notifies synchronously on every transition; a ``ThrottledPublisher``
sits downstream and forwards at most one snapshot per ``min_interval``.
Deliveries always carry the store's latest state, and terminal states are
forwarded at once, so the last delivery of a run is its true final state.
"""

import asyncio
import time
from collections.abc import Callable

from ..observability.logging import get_logger
from .models import GenerationState
from .store import StateStore

logger = get_logger(__name__)

StateSink = Callable[[GenerationState], None]


class ThrottledPublisher:
    def __init__(
        self,
        store: StateStore,
        sink: StateSink,
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self._store = store
        self._sink = sink
        self._min_interval = min_interval
        self._clock = clock
        self._last_delivery_at: float | None = None
        self._last_delivered: GenerationState | None = None
        self._pending: asyncio.TimerHandle | None = None
        self._unsubscribe: Callable[[], None] | None = store.subscribe(self._on_change)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _on_change(self, state: GenerationState) -> None:
        if state.status.is_terminal:
            self._cancel_pending()
            self._deliver(state)
            return

        if self._pending is not None:
            # A delivery is already scheduled and will pick up the latest state
            return

        now = self._clock()
        wait = 0.0
        if self._last_delivery_at is not None:
            wait = self._min_interval - (now - self._last_delivery_at)
        if wait <= 0:
            self._deliver(state)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to defer on
            self._deliver(state)
            return
        self._pending = loop.call_later(wait, self._deliver_latest)

    def _deliver_latest(self) -> None:
        self._pending = None
        self._deliver(self._store.state)

    def _deliver(self, state: GenerationState) -> None:
        if state == self._last_delivered:
            return
        self._last_delivered = state
        self._last_delivery_at = self._clock()
        try:
            self._sink(state)
        except Exception as e:
            logger.error(f"State sink failed: {e}", status=state.status.value)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def flush(self) -> None:
        """Deliver the latest state now if it has not been delivered yet."""
        self._cancel_pending()
        self._deliver(self._store.state)

    def close(self) -> None:
        """Flush outstanding changes and stop listening to the store."""
        self.flush()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
