"""Asyncio driver for the post-checkout reconciliation state machine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from dayssupply.reconciliation.markers import CheckoutMarkerStore, InMemoryMarkerStore
from dayssupply.reconciliation.state import (
    DEFAULT_WINDOW_SECONDS,
    AttemptsExhausted,
    CheckoutReturned,
    MarkerResumed,
    ReconciliationEvent,
    ReconciliationState,
    StatusObserved,
    Stopped,
    WindowElapsed,
    can_access_gated_content,
    reduce,
)
from dayssupply.reconciliation.status_client import ProStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_RESUME_ATTEMPTS = 6
DEFAULT_DELAY_SECONDS = 1.5


class StatusSource(Protocol):
    async def fetch(self) -> ProStatus:
        ...


class ReconciliationPoller:
    """Polls entitlement after a checkout redirect until the server catches up.

    ``refresh`` is coalesced: callers arriving while a query is outstanding
    await that same query. The activation loop runs as one background task
    which ``close`` cancels; once closed the state no longer changes.
    """

    def __init__(
        self,
        source: StatusSource,
        markers: CheckoutMarkerStore | None = None,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        resume_attempts: int = DEFAULT_RESUME_ATTEMPTS,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        screenshot_mode: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._markers = markers or InMemoryMarkerStore()
        self._window_seconds = window_seconds
        self._max_attempts = max_attempts
        self._resume_attempts = resume_attempts
        self._delay_seconds = delay_seconds
        self._screenshot_mode = screenshot_mode
        self._clock = clock
        self._sleep = sleep
        self._state = ReconciliationState()
        self._inflight: asyncio.Task[ProStatus] | None = None
        self._activation: asyncio.Task[None] | None = None
        # Set whenever the phase leaves ACTIVATING; wakes any pending wait.
        self._settled = asyncio.Event()

    @property
    def state(self) -> ReconciliationState:
        return self._state

    @property
    def can_access(self) -> bool:
        return can_access_gated_content(self._state, screenshot_mode=self._screenshot_mode)

    @property
    def activation_task(self) -> asyncio.Task[None] | None:
        return self._activation

    async def refresh(self) -> ProStatus:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._query())
        return await asyncio.shield(self._inflight)

    def on_checkout_success(self) -> None:
        """Record the checkout redirect and start polling unless already entitled."""
        if self._state.stopped:
            return
        now = self._clock()
        self._markers.save(now)
        self._dispatch(CheckoutReturned(at=now))
        if self._polling():
            self._start(self._max_attempts)
        else:
            self._markers.clear()

    def resume(self) -> bool:
        """Re-enter activation from a persisted marker still inside the window."""
        if self._state.stopped:
            return False
        marker = self._markers.load()
        if marker is None:
            return False
        self._dispatch(MarkerResumed(marker_at=marker, now=self._clock()))
        if not self._polling():
            self._markers.clear()
            return False
        if self._activation is None or self._activation.done():
            self._start(self._resume_attempts)
        return True

    async def wait(self) -> None:
        """Block until the current activation loop has finished."""
        if self._activation is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._activation

    async def close(self) -> None:
        self._dispatch(Stopped())
        for task in (self._activation, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._activation = None
        self._inflight = None

    def _dispatch(self, event: ReconciliationEvent) -> None:
        previous = self._state
        self._state = reduce(previous, event, window_seconds=self._window_seconds)
        if self._polling():
            self._settled.clear()
        else:
            self._settled.set()
        if previous.phase is not self._state.phase:
            logger.info(
                "reconciliation.phase_changed",
                extra={
                    "from": previous.phase.value,
                    "to": self._state.phase.value,
                    "event": type(event).__name__,
                },
            )

    def _polling(self) -> bool:
        return self._state.activating and not self._state.stopped

    def _start(self, attempts: int) -> None:
        if self._activation is not None and not self._activation.done():
            self._activation.cancel()
        self._activation = asyncio.get_running_loop().create_task(self._activate(attempts))

    async def _query(self) -> ProStatus:
        try:
            status = await self._source.fetch()
        finally:
            self._inflight = None
        self._dispatch(StatusObserved(is_entitled=status.is_entitled, status=status.status))
        if status.is_entitled and not self._state.stopped:
            self._markers.clear()
        return status

    async def _wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until activation settles, whichever comes first."""
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        settled = asyncio.ensure_future(self._settled.wait())
        try:
            await asyncio.wait({sleeper, settled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            settled.cancel()

    async def _activate(self, attempts: int) -> None:
        for attempt in range(1, attempts + 1):
            await self.refresh()
            if not self._polling():
                return
            if attempt < attempts:
                await self._wait(self._delay_seconds)
                if not self._polling():
                    return

        self._dispatch(AttemptsExhausted())
        logger.info("reconciliation.attempts_exhausted", extra={"attempts": attempts})
        # Provisional access lasts until the recency window closes.
        while self._polling():
            now = self._clock()
            checkout_at = self._state.checkout_at or now
            remaining = self._window_seconds - (now - checkout_at)
            if remaining > 0:
                await self._wait(remaining)
                continue
            # The webhook may have landed while waiting.
            await self.refresh()
            self._dispatch(WindowElapsed(now=self._clock()))
            break
        if not self._state.stopped:
            self._markers.clear()
