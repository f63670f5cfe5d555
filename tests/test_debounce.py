from __future__ import annotations

import threading
import time
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from conftest import wait_for
from watchcat.debounce import DebounceTimer


def test_burst_collapses_to_single_trailing_fire() -> None:
    fire_times: List[float] = []
    timer = DebounceTimer(0.2, lambda: fire_times.append(time.monotonic()))

    last_schedule = 0.0
    for _ in range(5):
        timer.schedule()
        last_schedule = time.monotonic()
        time.sleep(0.02)

    assert wait_for(lambda: len(fire_times) == 1, timeout=2.0)
    time.sleep(0.4)

    assert len(fire_times) == 1
    assert timer.fired == 1
    assert fire_times[0] >= last_schedule + 0.2 - 0.01
    assert fire_times[0] < last_schedule + 0.2 + 0.5
    assert not timer.armed


@pytest.mark.parametrize("bursts", [1, 2, 3])
def test_separate_bursts_fire_separately(bursts: int) -> None:
    callback = MagicMock()
    timer = DebounceTimer(0.05, callback)

    for _ in range(bursts):
        timer.schedule()
        timer.schedule()
        assert wait_for(lambda: not timer.armed, timeout=2.0)
        time.sleep(0.05)

    assert callback.call_count == bursts


def test_schedule_arms_timer() -> None:
    timer = DebounceTimer(5.0, MagicMock())
    assert not timer.armed
    timer.schedule()
    assert timer.armed
    timer.stop()


def test_cancel_prevents_fire_and_timer_stays_usable() -> None:
    callback = MagicMock()
    timer = DebounceTimer(0.1, callback)

    timer.schedule()
    timer.cancel()
    assert not timer.armed
    time.sleep(0.25)
    callback.assert_not_called()

    timer.schedule()
    assert wait_for(lambda: callback.call_count == 1, timeout=2.0)


def test_stop_is_idempotent_and_terminal() -> None:
    callback = MagicMock()
    timer = DebounceTimer(0.05, callback)
    timer.schedule()
    timer.stop()
    timer.stop()

    assert timer.stopped
    timer.schedule()
    assert not timer.armed
    time.sleep(0.15)
    callback.assert_not_called()


def test_reschedule_during_callback_fires_again() -> None:
    """A schedule that races with an in-flight fire must not be lost."""
    entered = threading.Event()
    release = threading.Event()
    calls: List[int] = []

    def callback() -> None:
        calls.append(1)
        if len(calls) == 1:
            entered.set()
            release.wait(2.0)

    timer = DebounceTimer(0.05, callback)
    timer.schedule()
    assert entered.wait(2.0)

    # Fire in flight; a new qualifying event arrives now
    timer.schedule()
    assert timer.armed
    release.set()

    assert wait_for(lambda: len(calls) == 2, timeout=2.0)
    assert timer.fired == 2


def test_callback_exception_is_logged() -> None:
    callback = MagicMock(side_effect=[RuntimeError("boom"), None])
    timer = DebounceTimer(0.02, callback)

    with patch("watchcat.debounce.logger") as mock_logger:
        timer.schedule()
        assert wait_for(lambda: callback.call_count == 1, timeout=2.0)
        assert wait_for(lambda: mock_logger.error.called, timeout=2.0)
    assert "Error in debounce callback" in mock_logger.error.call_args[0][0]

    timer.schedule()
    assert wait_for(lambda: callback.call_count == 2, timeout=2.0)


def test_repr() -> None:
    assert "interval=0.5" in repr(DebounceTimer(0.5, MagicMock()))


@pytest.mark.parametrize("interval", [float("inf"), float("nan"), -0.5])
def test_invalid_interval_rejected(interval: float) -> None:
    with pytest.raises(ValueError, match="Invalid debounce interval"):
        DebounceTimer(interval, MagicMock())
