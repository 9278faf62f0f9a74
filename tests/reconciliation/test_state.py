import pytest

from dayssupply.reconciliation.state import (
    AttemptsExhausted,
    CheckoutReturned,
    MarkerResumed,
    Phase,
    ReconciliationState,
    StatusObserved,
    Stopped,
    WindowElapsed,
    can_access_gated_content,
    reduce,
)

WINDOW = 600.0


def _activating(at: float = 1_000.0) -> ReconciliationState:
    return reduce(ReconciliationState(), CheckoutReturned(at=at), window_seconds=WINDOW)


def test_checkout_return_enters_activating():
    state = _activating()
    assert state.phase is Phase.ACTIVATING
    assert state.checkout_at == 1_000.0
    assert can_access_gated_content(state) is True


def test_checkout_return_when_already_entitled_stays_idle():
    entitled = ReconciliationState(is_entitled=True, status="active")
    state = reduce(entitled, CheckoutReturned(at=1_000.0), window_seconds=WINDOW)
    assert state.phase is Phase.IDLE


def test_entitled_observation_settles_and_clears_checkout():
    state = reduce(_activating(), StatusObserved(True, "trialing"), window_seconds=WINDOW)
    assert state.phase is Phase.IDLE
    assert state.is_entitled is True
    assert state.checkout_at is None


def test_unentitled_observations_count_attempts():
    state = _activating()
    for _ in range(3):
        state = reduce(state, StatusObserved(False, "unknown"), window_seconds=WINDOW)
    assert state.phase is Phase.ACTIVATING
    assert state.attempts == 3


def test_exhausted_attempts_keep_provisional_access_inside_window():
    state = reduce(_activating(), AttemptsExhausted(), window_seconds=WINDOW)
    assert state.exhausted is True
    state = reduce(state, WindowElapsed(now=1_000.0 + WINDOW - 1), window_seconds=WINDOW)
    assert state.phase is Phase.ACTIVATING
    assert can_access_gated_content(state) is True


def test_window_elapsed_returns_to_idle():
    state = reduce(_activating(), WindowElapsed(now=1_000.0 + WINDOW), window_seconds=WINDOW)
    assert state.phase is Phase.IDLE
    assert can_access_gated_content(state) is False


@pytest.mark.parametrize(
    ("age", "expected"), [(0.0, Phase.ACTIVATING), (599.0, Phase.ACTIVATING), (600.0, Phase.IDLE)]
)
def test_marker_resumes_only_inside_window(age, expected):
    event = MarkerResumed(marker_at=5_000.0, now=5_000.0 + age)
    state = reduce(ReconciliationState(), event, window_seconds=WINDOW)
    assert state.phase is expected


def test_marker_from_the_future_is_ignored():
    event = MarkerResumed(marker_at=5_000.0, now=4_000.0)
    assert reduce(ReconciliationState(), event, window_seconds=WINDOW).phase is Phase.IDLE


def test_idle_observation_updates_status_only():
    state = reduce(ReconciliationState(), StatusObserved(False, "past_due"), window_seconds=WINDOW)
    assert state.phase is Phase.IDLE
    assert state.status == "past_due"
    assert state.attempts == 0


def test_stopped_state_ignores_later_events():
    stopped = reduce(_activating(), Stopped(), window_seconds=WINDOW)
    after = reduce(stopped, StatusObserved(True, "active"), window_seconds=WINDOW)
    assert after == stopped
    assert after.is_entitled is False


def test_screenshot_mode_grants_access():
    assert can_access_gated_content(ReconciliationState(), screenshot_mode=True) is True
