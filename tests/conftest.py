from __future__ import annotations

import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Generator, List
from unittest.mock import MagicMock

import pytest

from watchcat.config import LaunchConfig
from watchcat.events import WatchTarget
from watchcat.sources import EventSource


class FakeEventSource(EventSource):
    """In-memory event source; tests push events with ``emit``."""

    instances: List["FakeEventSource"] = []

    def __init__(self, target: WatchTarget, fail_start: bool = False) -> None:
        super().__init__(target)
        self.fail_start = fail_start
        self.started = False
        self.release_calls = 0
        self.activity: List[bool] = []
        FakeEventSource.instances.append(self)

    def start(self) -> None:
        if self.fail_start:
            raise OSError("inotify watch limit reached")
        self.started = True
        self.set_active(True)

    def set_active(self, active: bool) -> None:
        super().set_active(active)
        self.activity.append(active)

    def _release(self) -> None:
        self.release_calls += 1


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Fixture for a temporary directory using tempfile.TemporaryDirectory."""
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname).resolve()


@pytest.fixture
def dir_target(temp_dir: Path) -> WatchTarget:
    return WatchTarget(path=temp_dir, is_directory=True)


@pytest.fixture
def fake_sources() -> Generator[List[FakeEventSource], None, None]:
    """Track every FakeEventSource created during a test."""
    FakeEventSource.instances = []
    yield FakeEventSource.instances
    FakeEventSource.instances = []


@pytest.fixture
def make_config() -> Callable[..., LaunchConfig]:
    """Build a LaunchConfig with an executable and the given overrides."""
    def _make(**overrides: Any) -> LaunchConfig:
        values: dict[str, Any] = {"paths": ["."], "executable": "echo", "arguments": "hi"}
        values.update(overrides)
        return LaunchConfig(**values)
    return _make


@pytest.fixture
def mock_process() -> MagicMock:
    """A Popen-like object that exits immediately with code 0."""
    proc = MagicMock(spec=subprocess.Popen)
    proc.pid = 4242
    proc.wait.return_value = 0
    proc.poll.return_value = 0
    return proc


@pytest.fixture
def mock_popen(mock_process: MagicMock) -> MagicMock:
    return MagicMock(return_value=mock_process)


@pytest.fixture
def counting_popen() -> Callable[[], Any]:
    """A Popen replacement recording launch times (monotonic) in ``.launches``."""
    import time

    class _Popen:
        def __init__(self) -> None:
            self.launches: List[float] = []
            self.lock = threading.Lock()

        def __call__(self, *args: Any, **kwargs: Any) -> MagicMock:
            with self.lock:
                self.launches.append(time.monotonic())
            proc = MagicMock(spec=subprocess.Popen)
            proc.wait.return_value = 0
            proc.poll.return_value = 0
            return proc

    return _Popen


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    import time

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
