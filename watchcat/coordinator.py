"""Coordinate event sources, the processing loop, debouncing and launches.

Data flow::

    EventSource -> EventQueue -> EventProcessor -> (DebounceTimer ->) ProcessLauncher

:class:`WatchCoordinator` owns every shared piece of state (the watcher set,
the queue and the single debounce timer) instead of leaving them as
process-wide globals, and walks the process through its states::

    STARTING -> WATCHING <-> SUSPENDED -> SHUTTING_DOWN -> TERMINATED

``SUSPENDED`` is entered and left only by the launcher's suspend bracket.
``SHUTTING_DOWN`` is entered once, by :meth:`WatchCoordinator.shutdown`.
"""

from __future__ import annotations

import enum
import logging
import subprocess
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from watchcat.config import LaunchConfig
from watchcat.debounce import DebounceTimer
from watchcat.events import ChangeEvent, ChangeKind, WatchTarget
from watchcat.launcher import LaunchOutcome, ProcessLauncher
from watchcat.processor import DEFAULT_POLL_INTERVAL, EventProcessor, EventQueue
from watchcat.sources import EventSource, WatchdogEventSource, WatcherSet

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["CoordinatorState", "WatchCoordinator"]


class CoordinatorState(enum.Enum):
    STARTING = "starting"
    WATCHING = "watching"
    SUSPENDED = "suspended"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class WatchCoordinator:
    """Own the watcher set, event queue, processor, debounce timer and launcher.

    Attributes:
        config (LaunchConfig): The launch configuration.
        targets (List[WatchTarget]): Targets to watch.
        queue (EventQueue): The single queue every source feeds.
        watchers (WatcherSet): The live event sources.
        launcher (ProcessLauncher): Starts the configured program.
        timer (Optional[DebounceTimer]): The debounce timer, None when launch_delay is 0.
        processor (EventProcessor): The single consumer of ``queue``.
    """

    def __init__(
        self,
        config: LaunchConfig,
        targets: Iterable[WatchTarget],
        source_factory: Callable[[WatchTarget], EventSource] = WatchdogEventSource,
        popen: Callable[..., Any] = subprocess.Popen,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.config = config
        self.targets: List[WatchTarget] = list(targets)
        self._source_factory = source_factory
        self._lock = threading.RLock()
        self._state = CoordinatorState.STARTING

        self.queue = EventQueue()
        self.watchers = WatcherSet()
        self.launcher = ProcessLauncher(config, self.watchers, self.queue, popen=popen)
        self.timer: Optional[DebounceTimer] = (
            DebounceTimer(config.launch_delay, self._launch) if config.debounces else None
        )
        self.processor = EventProcessor(self.queue, self.dispatch, poll_interval=poll_interval)

        self.start_time = time.monotonic()
        self.events_processed = 0
        self.debounced_events = 0
        self.watch_errors = 0
        self.last_outcome: Optional[LaunchOutcome] = None

    @property
    def state(self) -> CoordinatorState:
        with self._lock:
            if self._state is CoordinatorState.WATCHING and self.watchers.suspended:
                return CoordinatorState.SUSPENDED
            return self._state

    @property
    def stopping(self) -> bool:
        with self._lock:
            return self._state in (CoordinatorState.SHUTTING_DOWN, CoordinatorState.TERMINATED)

    def start(self) -> int:
        """Start one event source per target and the processing loop.

        Targets whose source fails to start are skipped with an error.

        Returns:
            int: Number of active event sources.
        """
        for target in self.targets:
            if self.stopping:
                break
            source = self._source_factory(target)
            source.subscribe(self.queue.put)
            try:
                source.start()
            except (OSError, RuntimeError) as e:
                logger.error(f"Failed to watch {target}: {e}")
                source.dispose()
                continue
            self.watchers.add(source)
            logger.info(f"Watcher active: {target}")

        with self._lock:
            if self._state is not CoordinatorState.STARTING:
                return len(self.watchers)
            self._state = CoordinatorState.WATCHING
        self.processor.start()
        return len(self.watchers)

    def dispatch(self, event: Any) -> None:
        """Handle one dequeued event: log it, and schedule a launch if it qualifies."""
        if not isinstance(event, ChangeEvent):
            logger.debug(f"Ignoring unexpected event: {event!r}")
            return

        self.events_processed += 1
        if event.kind is ChangeKind.WATCH_ERROR:
            self.watch_errors += 1
            logger.warning(f"Watcher error for {event.path}: {event.error}")
            return

        logger.debug(event.describe())
        self.on_qualifying_event()

    def on_qualifying_event(self) -> None:
        """Launch now, or (re)arm the debounce timer when a launch delay is set."""
        if self.stopping:
            return
        if self.timer is None:
            self._launch()
            return
        if self.timer.armed:
            self.debounced_events += 1
        self.timer.schedule()
        logger.debug(f"Launch scheduled in {self.timer.interval}s")

    def _launch(self) -> None:
        if self.stopping:
            return
        outcome = self.launcher.launch()
        if outcome is not None:
            self.last_outcome = outcome

    def shutdown(self) -> bool:
        """Cancel any pending launch and dispose every event source.

        Only the first call does anything; later calls return False.

        Returns:
            bool: True if this call performed the shutdown.
        """
        with self._lock:
            if self._state in (CoordinatorState.SHUTTING_DOWN, CoordinatorState.TERMINATED):
                return False
            self._state = CoordinatorState.SHUTTING_DOWN

        if self.timer is not None:
            self.timer.stop()
        self.processor.stop()

        if self.watchers.dispose_all():
            logger.info("Watchers removed.")

        running = self.launcher.reap()
        if running:
            logger.info(f"{running} launched program(s) still running, leaving them be.")

        with self._lock:
            self._state = CoordinatorState.TERMINATED
        logger.debug(f"Final statistics: {self.get_statistics()}")
        return True

    def get_statistics(self) -> Dict[str, Any]:
        """Return usage counters.

        Returns:
            Dict[str, Any]: Events received and processed, launches, failures,
            debounced and discarded events, watch errors and uptime.
        """
        return {
            "sources": len(self.watchers),
            "events_enqueued": self.queue.enqueued,
            "events_processed": self.events_processed,
            "events_discarded": self.queue.discarded,
            "debounced_events": self.debounced_events,
            "watch_errors": self.watch_errors,
            "launches": self.launcher.launches,
            "launch_failures": self.launcher.failures,
            "uptime": time.monotonic() - self.start_time,
        }

    def __repr__(self) -> str:
        return f"<WatchCoordinator state={self.state.value} sources={len(self.watchers)}>"
