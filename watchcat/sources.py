"""Filesystem event sources built on watchdog.

Responsibility:
    Turn OS change notifications for one :class:`~watchcat.events.WatchTarget`
    into :class:`~watchcat.events.ChangeEvent` objects and hand them to
    subscribers. Nothing here knows about queues, timers or processes.

Design:
    - **Capability interface**: :class:`EventSource` exposes ``subscribe``,
      ``unsubscribe``, ``set_active`` and ``dispose``. The coordinator only
      depends on this interface.
    - **One observer per target**: :class:`WatchdogEventSource` owns its own
      ``watchdog`` ``Observer`` thread, so every watched path is serviced
      independently.
    - **Suspension**: while inactive, events are discarded before they reach
      subscribers. The active check and the delivery happen under the source
      lock, so once ``set_active(False)`` returns nothing more is delivered.
    - **Errors**: a periodic health check reports a dead observer or a vanished
      directory once as a ``WATCH_ERROR`` event. The source is not recreated.
"""

from __future__ import annotations

import abc
import itertools
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from watchcat.events import ChangeEvent, ChangeKind, WatchTarget

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["EventSource", "WatchdogEventSource", "WatcherSet", "EventHandler"]

EventHandler = Callable[[ChangeEvent], None]

HEALTH_CHECK_INTERVAL = 10.0


class EventSource(abc.ABC):
    """Deliver change events for one watch target to subscribers."""

    def __init__(self, target: WatchTarget) -> None:
        self.target = target
        self._lock = threading.RLock()
        self._subscribers: Dict[int, EventHandler] = {}
        self._handles = itertools.count(1)
        self._active = False
        self._disposed = False

    @abc.abstractmethod
    def start(self) -> None:
        """Begin observing and raising events."""

    @abc.abstractmethod
    def _release(self) -> None:
        """Release the underlying OS resources. Called once, from dispose()."""

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def disposed(self) -> bool:
        with self._lock:
            return self._disposed

    def subscribe(self, handler: EventHandler) -> int:
        """Register ``handler`` and return a handle for :meth:`unsubscribe`."""
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = handler
            return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._subscribers.pop(handle, None)

    def set_active(self, active: bool) -> None:
        """Enable or disable event raising. Ignored once disposed."""
        with self._lock:
            if self._disposed:
                return
            if self._active != active:
                self._active = active
                logger.debug(f"Watcher {'resumed' if active else 'suspended'}: {self.target}")

    def dispose(self) -> None:
        """Stop observing and drop all subscribers. Safe to call more than once."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._active = False
            self._subscribers.clear()
        try:
            self._release()
        except Exception as e:
            logger.error(f"Error disposing watcher for {self.target}: {e}")

    def emit(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to every subscriber.

        Qualifying events are dropped while the source is inactive. Watch
        errors are always delivered since they never trigger a launch.
        """
        with self._lock:
            if self._disposed:
                return
            if event.is_qualifying and not self._active:
                return
            for handler in list(self._subscribers.values()):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Subscriber failed for {event.describe()}: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} target={self.target} active={self._active} disposed={self._disposed}>"


class _TargetEventHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into :class:`ChangeEvent` objects."""

    def __init__(self, source: WatchdogEventSource) -> None:
        super().__init__()
        self.source = source
        self.target = source.target

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Parent directory mtime bumps always accompany a child event.
        if isinstance(event, DirModifiedEvent):
            return
        self._forward(ChangeKind.CHANGED, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.DELETED, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.RENAMED, event)

    def _forward(self, kind: ChangeKind, event: FileSystemEvent) -> None:
        src_path = _as_str(event.src_path)
        dest_path = _as_str(getattr(event, "dest_path", "")) if isinstance(event, FileSystemMovedEvent) else ""

        if kind is ChangeKind.RENAMED:
            if not (self.target.matches(src_path) or (dest_path and self.target.matches(dest_path))):
                return
            change = ChangeEvent(
                kind,
                dest_path or src_path,
                old_path=src_path,
                is_directory=event.is_directory,
            )
        else:
            if not self.target.matches(src_path):
                return
            change = ChangeEvent(kind, src_path, is_directory=event.is_directory)

        self.source.emit(change)


def _as_str(path: object) -> str:
    if isinstance(path, bytes):
        return path.decode(errors="replace")
    return str(path)


class WatchdogEventSource(EventSource):
    """Event source backed by a dedicated watchdog ``Observer``.

    Attributes:
        target (WatchTarget): The watched path.
        handler (FileSystemEventHandler): The watchdog handler feeding this source.
    """

    def __init__(self, target: WatchTarget, health_check_interval: float = HEALTH_CHECK_INTERVAL) -> None:
        super().__init__(target)
        self.handler = _TargetEventHandler(self)
        self.health_check_interval = health_check_interval
        self._observer: Optional[Observer] = None
        self._health_check_timer: Optional[threading.Timer] = None
        self._error_reported = False

    def start(self) -> None:
        """Schedule the observer on the target's directory and start raising events.

        Raises:
            FileNotFoundError: If the watched directory no longer exists.
            OSError: If the OS facility refuses the watch (e.g. inotify limits).
        """
        watch_dir = self.target.watch_dir
        if not watch_dir.exists():
            raise FileNotFoundError(f"Path not found: {watch_dir}")

        observer = Observer()
        observer.schedule(self.handler, str(watch_dir), recursive=self.target.recursive)
        observer.start()
        with self._lock:
            self._observer = observer
            self._active = True
        logger.debug(f"Observer started ({type(observer).__name__}) for {watch_dir}")
        self._schedule_health_check()

    def check_health(self) -> None:
        """Report a dead observer or missing directory once as a watch error."""
        with self._lock:
            if self._disposed or self._error_reported or self._observer is None:
                return
            observer = self._observer

        error: Optional[BaseException] = None
        try:
            if not self.target.watch_dir.exists():
                error = FileNotFoundError(f"Watched directory disappeared: {self.target.watch_dir}")
            elif not observer.is_alive():
                error = RuntimeError("Watchdog observer stopped unexpectedly")
        except OSError as e:
            error = e

        if error is not None:
            with self._lock:
                self._error_reported = True
            self.emit(ChangeEvent(ChangeKind.WATCH_ERROR, str(self.target.path), error=error))

    def _schedule_health_check(self) -> None:
        with self._lock:
            if self._disposed or self.health_check_interval <= 0:
                return
            self._health_check_timer = threading.Timer(self.health_check_interval, self._run_health_check)
            self._health_check_timer.daemon = True
            self._health_check_timer.start()

    def _run_health_check(self) -> None:
        try:
            self.check_health()
        except Exception as e:
            logger.error(f"Health check failed for {self.target}: {e}")
        finally:
            if not self._error_reported:
                self._schedule_health_check()

    def _release(self) -> None:
        with self._lock:
            timer, self._health_check_timer = self._health_check_timer, None
            observer, self._observer = self._observer, None
        if timer:
            timer.cancel()
        if observer is not None and observer.is_alive():
            observer.stop()
            observer.join(timeout=5.0)
            if observer.is_alive():
                logger.warning(f"Observer thread for {self.target} did not terminate within timeout.")


class WatcherSet:
    """The live collection of event sources, suspended and disposed together.

    Every mutation is serialized on one lock, so a dispose that races with a
    launcher's suspend/resume bracket is safe.
    """

    def __init__(self, sources: Optional[List[EventSource]] = None) -> None:
        self._lock = threading.RLock()
        self._sources: List[EventSource] = list(sources or [])
        self._suspend_depth = 0
        self._disposed = False

    def add(self, source: EventSource) -> None:
        with self._lock:
            if self._disposed:
                source.dispose()
                return
            if self._suspend_depth:
                source.set_active(False)
            self._sources.append(source)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sources)

    def __iter__(self) -> Iterator[EventSource]:
        with self._lock:
            return iter(list(self._sources))

    @property
    def suspended(self) -> bool:
        with self._lock:
            return self._suspend_depth > 0

    @property
    def disposed(self) -> bool:
        with self._lock:
            return self._disposed

    def suspend_all(self) -> None:
        with self._lock:
            self._suspend_depth += 1
            if self._disposed or self._suspend_depth > 1:
                return
            for source in self._sources:
                source.set_active(False)
        logger.debug("Watchers suspended.")

    def resume_all(self) -> None:
        with self._lock:
            if self._suspend_depth == 0:
                return
            self._suspend_depth -= 1
            if self._disposed or self._suspend_depth > 0:
                return
            for source in self._sources:
                source.set_active(True)
        logger.debug("Watchers resumed.")

    @contextmanager
    def suspension(self) -> Iterator[WatcherSet]:
        """Suspend every source for the duration of the block.

        Resume runs on every exit path, including exceptions.
        """
        self.suspend_all()
        try:
            yield self
        finally:
            self.resume_all()

    def dispose_all(self) -> int:
        """Dispose every source once. Returns how many were disposed by this call."""
        with self._lock:
            if self._disposed:
                return 0
            self._disposed = True
            sources = list(self._sources)
        for source in sources:
            source.dispose()
        return len(sources)
