"""Single-consumer processing of change events.

Every event source feeds one :class:`EventQueue`. A single
:class:`EventProcessor` thread drains it in FIFO order and hands each event
to a dispatch function. Notification delivery (on watchdog's threads) is
decoupled from processing, which may block for as long as a launched program
is being waited on.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional

from watchcat.events import ChangeEvent

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["EventQueue", "EventProcessor"]

DEFAULT_POLL_INTERVAL = 0.1


class EventQueue:
    """Unbounded, thread-safe FIFO of change events.

    Attributes:
        enqueued (int): Total events accepted.
        discarded (int): Total events dropped by :meth:`drain`.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[ChangeEvent] = queue.Queue()
        self._counter_lock = threading.Lock()
        self.enqueued = 0
        self.discarded = 0

    def put(self, event: ChangeEvent) -> None:
        """Enqueue ``event``. Never blocks."""
        self._queue.put_nowait(event)
        with self._counter_lock:
            self.enqueued += 1

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Dequeue the oldest event, or return None if none arrives within ``timeout``."""
        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> int:
        """Discard every queued event and return how many were dropped."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        if dropped:
            with self._counter_lock:
                self.discarded += dropped
        return dropped

    def __len__(self) -> int:
        return self._queue.qsize()


class EventProcessor:
    """Drain an :class:`EventQueue` on a dedicated worker thread.

    The worker polls the queue, sleeping up to ``poll_interval`` seconds when
    it is empty, and calls ``dispatch`` for every event. Exceptions raised by
    ``dispatch`` are logged and never end the loop. The thread is a daemon and
    is abandoned at process exit.
    """

    def __init__(
        self,
        event_queue: EventQueue,
        dispatch: Callable[[Any], None],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.queue = event_queue
        self.dispatch = dispatch
        self.poll_interval = poll_interval
        self.processed = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker_loop, name="EventProcessor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the worker to exit and wait up to ``timeout`` seconds for it.

        The worker may be blocked inside a dispatch (e.g. waiting on a
        launched program); in that case it is left behind.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and timeout:
            thread.join(timeout)

    def _worker_loop(self) -> None:
        """Worker thread loop to process events from the queue."""
        while not self._stop_event.is_set():
            event = self.queue.get(timeout=self.poll_interval)
            if event is None:
                continue
            try:
                self.dispatch(event)
            except Exception as e:
                logger.error(f"Error processing event {event!r}: {e}", exc_info=True)
            finally:
                self.processed += 1
