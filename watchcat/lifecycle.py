"""Process-wide shutdown handling.

:class:`LifecycleController` turns SIGINT/SIGTERM, closure of the input
stream, and normal interpreter exit into one shutdown callback that runs
exactly once.
"""

from __future__ import annotations

import atexit
import logging
import signal
import sys
import threading
from types import FrameType
from typing import Any, Callable, Dict, Optional, TextIO

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["LifecycleController"]

STOP_SIGNALS = ("SIGINT", "SIGTERM", "SIGBREAK")


class LifecycleController:
    """Run a shutdown callback once on signal, input closure or interpreter exit.

    Attributes:
        stop_event (threading.Event): Set when a stop has been requested.
        reason (Optional[str]): What requested the stop, if anything.
    """

    def __init__(
        self,
        shutdown: Callable[[], Any],
        watch_input: bool = True,
        input_stream: Optional[TextIO] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            shutdown (Callable[[], Any]): Cleanup to run exactly once.
            watch_input (bool): Stop when the input stream yields a line or reaches EOF.
            input_stream (Optional[TextIO]): Stream to watch. Defaults to ``sys.stdin``.
        """
        self._shutdown_callback = shutdown
        self.watch_input = watch_input
        self._input_stream = input_stream
        self.stop_event = threading.Event()
        self.reason: Optional[str] = None
        self._once_lock = threading.Lock()
        self._shut_down = False
        self._previous_handlers: Dict[int, Any] = {}
        self._input_thread: Optional[threading.Thread] = None

    @property
    def shut_down(self) -> bool:
        with self._once_lock:
            return self._shut_down

    def install(self) -> None:
        """Register the atexit hook and signal handlers, and start watching input."""
        atexit.register(self.shutdown)

        for name in STOP_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                self._previous_handlers[sig] = signal.signal(sig, self._signal_handler)
            except (ValueError, OSError) as e:
                # Only the main thread may install signal handlers.
                logger.debug(f"Could not install handler for {name}: {e}")

        if self.watch_input:
            stream = self._input_stream if self._input_stream is not None else sys.stdin
            if stream is None:
                logger.debug("No input stream available, not watching for exit requests.")
                return
            self._input_thread = threading.Thread(
                target=self._watch_input, args=(stream,), name="InputWatcher", daemon=True
            )
            self._input_thread.start()

    def uninstall(self) -> None:
        """Undo :meth:`install`: restore previous signal handlers and drop the atexit hook."""
        atexit.unregister(self.shutdown)
        for sig, handler in self._previous_handlers.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (ValueError, OSError, TypeError) as e:
                logger.debug(f"Could not restore handler for signal {sig}: {e}")
        self._previous_handlers.clear()

    def request_stop(self, reason: str) -> None:
        if not self.stop_event.is_set():
            self.reason = reason
            self.stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop is requested. Returns True if it was."""
        return self.stop_event.wait(timeout)

    def shutdown(self) -> None:
        """Run the shutdown callback. Only the first call has any effect."""
        with self._once_lock:
            if self._shut_down:
                return
            self._shut_down = True
        self.request_stop(self.reason or "shutdown")
        try:
            self._shutdown_callback()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

    def _signal_handler(self, sig: int, frame: Optional[FrameType]) -> None:
        """Handle system signals (SIGINT, SIGTERM) for graceful shutdown.

        Sets the stop event; the default immediate termination is suppressed so
        the main thread can run the cleanup.

        Args:
            sig (int): The signal number.
            frame (Optional[FrameType]): The current stack frame (unused).
        """
        sig_name = signal.Signals(sig).name
        logger.info(f"Received signal {sig_name}, shutting down...")
        self.request_stop(sig_name)

    def _watch_input(self, stream: TextIO) -> None:
        try:
            line = stream.readline()
        except (OSError, ValueError) as e:
            logger.debug(f"Input stream unreadable, ignoring it: {e}")
            return
        if line:
            logger.info("Exit requested, shutting down...")
            self.request_stop("input")
        else:
            logger.info("Input stream closed, shutting down...")
            self.request_stop("eof")
