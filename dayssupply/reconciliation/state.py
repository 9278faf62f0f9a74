"""Pure state transitions for post-checkout entitlement reconciliation.

After a checkout redirect the client knows the user has paid before the
webhook has reached the store. ``Phase.ACTIVATING`` covers that gap: gated
content stays available while the poller waits for the server to agree, and
the phase ends either when the server reports entitlement or when the recency
window closes.
"""
# ruff: noqa: UP007

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

DEFAULT_WINDOW_SECONDS = 600.0


class Phase(str, Enum):
    IDLE = "idle"
    ACTIVATING = "activating"


@dataclass(frozen=True)
class ReconciliationState:
    phase: Phase = Phase.IDLE
    is_entitled: bool = False
    status: str = "unknown"
    checkout_at: float | None = None
    attempts: int = 0
    exhausted: bool = False
    stopped: bool = False

    @property
    def activating(self) -> bool:
        return self.phase is Phase.ACTIVATING


@dataclass(frozen=True)
class CheckoutReturned:
    at: float


@dataclass(frozen=True)
class MarkerResumed:
    marker_at: float
    now: float


@dataclass(frozen=True)
class StatusObserved:
    is_entitled: bool
    status: str


@dataclass(frozen=True)
class AttemptsExhausted:
    pass


@dataclass(frozen=True)
class WindowElapsed:
    now: float


@dataclass(frozen=True)
class Stopped:
    pass


ReconciliationEvent = Union[
    CheckoutReturned, MarkerResumed, StatusObserved, AttemptsExhausted, WindowElapsed, Stopped
]


def window_open(checkout_at: float | None, now: float, window_seconds: float) -> bool:
    return checkout_at is not None and 0 <= now - checkout_at < window_seconds


def _begin(state: ReconciliationState, checkout_at: float) -> ReconciliationState:
    if state.is_entitled:
        return replace(state, phase=Phase.IDLE, checkout_at=None)
    return replace(
        state, phase=Phase.ACTIVATING, checkout_at=checkout_at, attempts=0, exhausted=False
    )


def _settle(state: ReconciliationState) -> ReconciliationState:
    return replace(state, phase=Phase.IDLE, checkout_at=None, attempts=0, exhausted=False)


def reduce(
    state: ReconciliationState,
    event: ReconciliationEvent,
    *,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> ReconciliationState:
    """Return the state after ``event``; a stopped state ignores everything."""
    if state.stopped:
        return state

    if isinstance(event, Stopped):
        return replace(state, stopped=True)

    if isinstance(event, CheckoutReturned):
        return _begin(state, event.at)

    if isinstance(event, MarkerResumed):
        if state.activating or not window_open(event.marker_at, event.now, window_seconds):
            return state
        return _begin(state, event.marker_at)

    if isinstance(event, StatusObserved):
        observed = replace(state, is_entitled=event.is_entitled, status=event.status)
        if not state.activating:
            return observed
        if event.is_entitled:
            return _settle(observed)
        return replace(observed, attempts=state.attempts + 1)

    if isinstance(event, AttemptsExhausted):
        if not state.activating:
            return state
        return replace(state, exhausted=True)

    if isinstance(event, WindowElapsed):
        if state.activating and not window_open(state.checkout_at, event.now, window_seconds):
            return _settle(state)
        return state

    raise TypeError(f"Unsupported reconciliation event: {type(event).__name__}")


def can_access_gated_content(state: ReconciliationState, *, screenshot_mode: bool = False) -> bool:
    """Entitled, provisionally entitled while activating, or forced on for screenshots."""
    return state.is_entitled or state.activating or screenshot_mode
