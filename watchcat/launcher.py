"""Start the configured program and optionally wait for it.

Start and wait outcomes are reported as explicit result values
(:class:`Started`/:class:`StartFailed`, :class:`Exited`/:class:`TimedOut`/
:class:`WaitFailed`) instead of propagating exceptions to the watch loop.

When a wait timeout is configured, every event source is suspended for the
duration of the launch so the program's own writes (build output, logs) are
not observed as new changes. The bracket is a context manager, so sources are
resumed on every exit path. A bounded wait that times out leaves the program
running; it is never killed.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from watchcat.config import LaunchConfig
from watchcat.processor import EventQueue
from watchcat.sources import WatcherSet

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    "Started",
    "StartFailed",
    "StartResult",
    "Exited",
    "TimedOut",
    "WaitFailed",
    "WaitResult",
    "LaunchOutcome",
    "ProcessLauncher",
    "build_command",
]

IS_WINDOWS = sys.platform == "win32"


@dataclass(frozen=True)
class Started:
    process: Any


@dataclass(frozen=True)
class StartFailed:
    reason: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Exited:
    code: int


@dataclass(frozen=True)
class TimedOut:
    timeout: float


@dataclass(frozen=True)
class WaitFailed:
    reason: str
    error: Optional[BaseException] = None


StartResult = Union[Started, StartFailed]
WaitResult = Union[Exited, TimedOut, WaitFailed]


@dataclass(frozen=True)
class LaunchOutcome:
    """What happened during one launch.

    Attributes:
        start (StartResult): Result of starting the program.
        wait (Optional[WaitResult]): Result of waiting, None in fire-and-forget mode
            or if the start failed.
        suspended (bool): Whether event sources were suspended around the launch.
    """

    start: StartResult
    wait: Optional[WaitResult] = None
    suspended: bool = False

    @property
    def started(self) -> bool:
        return isinstance(self.start, Started)


def _login_shell() -> str:
    try:
        import pwd

        return pwd.getpwuid(os.getuid()).pw_shell or "/bin/sh"
    except (ImportError, KeyError, AttributeError):
        return "/bin/sh"


def build_command(config: LaunchConfig) -> Tuple[Union[str, List[str]], Dict[str, Any]]:
    """Build the ``Popen`` command and keyword arguments for ``config``.

    On Windows the argument string is appended to the quoted executable and
    passed as a single command line, verbatim. Elsewhere it is split with
    :mod:`shlex`, or handed verbatim to the user's login shell when
    ``load_profile`` is set.

    Args:
        config (LaunchConfig): The launch configuration. ``executable`` must be set.

    Returns:
        Tuple[Union[str, List[str]], Dict[str, Any]]: The command and extra
        ``Popen`` keyword arguments.

    Raises:
        ValueError: If the argument string cannot be tokenized (e.g. unbalanced quotes).
    """
    executable = str(config.executable)
    arguments = config.arguments.strip()
    kwargs: Dict[str, Any] = {"stdin": subprocess.DEVNULL}

    if IS_WINDOWS:
        command: Union[str, List[str]] = subprocess.list2cmdline([executable])
        if arguments:
            command = f"{command} {arguments}"
        flag_name = "CREATE_NO_WINDOW" if config.no_window else "CREATE_NEW_CONSOLE"
        kwargs["creationflags"] = getattr(subprocess, flag_name, 0)
        return command, kwargs

    if config.load_profile:
        script = f"exec {shlex.quote(executable)}"
        if arguments:
            script = f"{script} {arguments}"
        return [_login_shell(), "-l", "-c", script], kwargs

    return [executable, *shlex.split(arguments)], kwargs


class ProcessLauncher:
    """Own the rule for starting the configured program.

    Attributes:
        config (LaunchConfig): The launch configuration.
        watchers (WatcherSet): Sources to suspend while waiting on the program.
        event_queue (Optional[EventQueue]): Queue drained inside the suspend bracket.
        launches (int): Number of launch attempts.
        failures (int): Number of failed starts.
    """

    def __init__(
        self,
        config: LaunchConfig,
        watchers: WatcherSet,
        event_queue: Optional[EventQueue] = None,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self.config = config
        self.watchers = watchers
        self.event_queue = event_queue
        self._popen = popen
        self._lock = threading.Lock()
        self._children: List[Any] = []
        self.launches = 0
        self.failures = 0

        if config.load_profile and IS_WINDOWS:
            logger.warning("--load-profile is not supported on this platform and will be ignored.")
        if config.no_window and not IS_WINDOWS:
            logger.debug("--no-window has no effect on this platform.")

    def launch(self) -> Optional[LaunchOutcome]:
        """Start the program, waiting for it if configured.

        Returns:
            Optional[LaunchOutcome]: None if no executable is configured,
            otherwise the outcome of the launch. Failures are logged, never raised.
        """
        if not self.config.executable:
            return None

        self.reap()

        if not self.config.waits:
            return LaunchOutcome(self._start())

        with self.watchers.suspension():
            self._drain("before launch")
            start = self._start()
            if not isinstance(start, Started):
                return LaunchOutcome(start, suspended=True)
            try:
                wait = self._wait(start.process)
            finally:
                self._release(start.process)
                self._drain("after wait")
        return LaunchOutcome(start, wait, suspended=True)

    def reap(self) -> int:
        """Forget background programs that have exited. Returns how many are still running."""
        with self._lock:
            running = []
            for proc in self._children:
                try:
                    code = proc.poll()
                except Exception as e:
                    logger.debug(f"Could not poll child process: {e}")
                    continue
                if code is None:
                    running.append(proc)
                else:
                    logger.debug(f"Program (PID {getattr(proc, 'pid', '?')}) exited with code {code}")
            self._children = running
            return len(running)

    def _start(self) -> StartResult:
        self.launches += 1
        logger.info("Starting program...")
        try:
            command, kwargs = build_command(self.config)
            logger.debug(f"Launch command: {command!r}")
            proc = self._popen(command, **kwargs)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            self.failures += 1
            logger.error(f"Failed to start {self.config.executable}: {e}", exc_info=True)
            return StartFailed(str(e), e)

        logger.debug(f"Program started (PID {getattr(proc, 'pid', '?')})")
        if not self.config.waits:
            self._track(proc)
        return Started(proc)

    def _wait(self, proc: Any) -> WaitResult:
        timeout = None if self.config.waits_forever else self.config.wait_timeout
        if timeout is None:
            logger.debug("Waiting for program to exit...")
        else:
            logger.debug(f"Waiting up to {timeout}s for program to exit...")
        try:
            code = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.info(f"Program still running after {timeout}s, resuming watch.")
            return TimedOut(float(timeout or 0.0))
        except Exception as e:
            logger.error(f"Error while waiting for program: {e}", exc_info=True)
            return WaitFailed(str(e), e)
        logger.debug(f"Program exited with code {code}")
        return Exited(code)

    def _release(self, proc: Any) -> None:
        # A program still running after the wait is left alone; keep it for reaping.
        try:
            if proc.poll() is None:
                self._track(proc)
        except Exception as e:
            logger.debug(f"Could not poll child process: {e}")

    def _track(self, proc: Any) -> None:
        with self._lock:
            self._children.append(proc)

    def _drain(self, when: str) -> None:
        if self.event_queue is None:
            return
        dropped = self.event_queue.drain()
        if dropped:
            logger.debug(f"Discarded {dropped} stale events {when}.")
