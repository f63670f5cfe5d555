"""Restartable single-shot delay used to coalesce bursts of change events.

The timer is either idle or armed with a deadline. Every :meth:`DebounceTimer.schedule`
call moves the deadline to ``now + interval``; the callback runs once, on the
timer's own thread, when the deadline passes with no further reschedule
(trailing-edge debounce).

Arm, cancel and fire transitions are serialized on a single condition
variable. The callback itself runs outside the lock, and a reschedule that
arrives while the callback is running arms the timer again so the next burst
still gets its own fire.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["DebounceTimer"]


class DebounceTimer:
    """Implement a reusable timer for debouncing events without thread churn.

    Attributes:
        interval (float): The debounce interval in seconds.
        callback (Callable[[], None]): The function to call when the timer fires.
        fired (int): Number of times the callback has been invoked.
    """

    __slots__ = ('interval', 'callback', 'fired', '_condition', '_target_time', '_active', '_stopped', '_thread')

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        """Initialize the debounce timer.

        Args:
            interval (float): The debounce interval in seconds.
            callback (Callable[[], None]): The function to call when the timer fires.

        Raises:
            ValueError: If interval is negative or not finite.
        """
        if not math.isfinite(interval) or interval < 0:
            raise ValueError(f"Invalid debounce interval: {interval}")
        self.interval = interval
        self.callback = callback
        self.fired = 0
        self._condition = threading.Condition()
        self._target_time = 0.0
        self._active = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    @property
    def armed(self) -> bool:
        """Return True if a fire is pending."""
        with self._condition:
            return self._active

    @property
    def stopped(self) -> bool:
        with self._condition:
            return self._stopped

    def schedule(self) -> None:
        """Arm the timer, or move its deadline if it is already armed.

        Returns:
            None
        """
        with self._condition:
            if self._stopped:
                return
            self._target_time = time.monotonic() + self.interval
            if not self._active:
                self._active = True
                self._start_thread()
            else:
                self._condition.notify()

    def cancel(self) -> None:
        """Drop a pending fire and return to idle. The timer stays usable.

        Returns:
            None
        """
        with self._condition:
            self._active = False
            self._condition.notify_all()

    def stop(self) -> None:
        """Stop the timer permanently. Safe to call more than once.

        Returns:
            None
        """
        with self._condition:
            self._stopped = True
            self._active = False
            self._condition.notify_all()

    def __repr__(self) -> str:
        return f"<DebounceTimer interval={self.interval} active={self._active} stopped={self._stopped}>"

    def _start_thread(self) -> None:
        """Start the timer thread if not already running. Caller holds the lock.

        Returns:
            None
        """
        if self._thread is None or not self._thread.is_alive():
            try:
                self._thread = threading.Thread(target=self._run, name="DebounceTimer")
                self._thread.daemon = True
                self._thread.start()
            except Exception:
                # Reset active state if thread fails to start to allow retries
                self._active = False
                logger.error("Failed to start DebounceTimer thread", exc_info=True)

    def _run(self) -> None:
        """Run the timer loop.

        Returns:
            None
        """
        with self._condition:
            while self._active and not self._stopped:
                wait_time = self._target_time - time.monotonic()

                if wait_time <= 0:
                    self._active = False
                    self.fired += 1
                    self._condition.release()
                    try:
                        self.callback()
                    except Exception:
                        logger.error("Error in debounce callback", exc_info=True)
                    finally:
                        self._condition.acquire()

                    # Rescheduled while the callback ran: keep going
                    if self._active:
                        continue
                    break

                self._condition.wait(wait_time)

            if self._thread is threading.current_thread():
                self._thread = None
