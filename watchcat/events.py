"""Change events and watch targets.

A :class:`WatchTarget` describes one user-supplied path, resolved once at
startup. A :class:`ChangeEvent` is produced by an event source for every
notification and consumed exactly once by the event processor.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["ChangeKind", "ChangeEvent", "WatchTarget", "resolve_targets"]


class ChangeKind(enum.Enum):
    """Tag of a :class:`ChangeEvent`."""

    CHANGED = "Changed"
    CREATED = "Created"
    DELETED = "Deleted"
    RENAMED = "Renamed"
    WATCH_ERROR = "WatchError"

    @property
    def is_qualifying(self) -> bool:
        """Return True if events of this kind may trigger a launch."""
        return self is not ChangeKind.WATCH_ERROR


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem notification.

    Attributes:
        kind (ChangeKind): What happened.
        path (str): Absolute path affected (destination path for renames).
        old_path (Optional[str]): Source path of a rename.
        error (Optional[BaseException]): Underlying failure for ``WATCH_ERROR``.
        is_directory (bool): Whether the affected path is a directory.
    """

    kind: ChangeKind
    path: str
    old_path: Optional[str] = None
    error: Optional[BaseException] = None
    is_directory: bool = False

    @property
    def is_qualifying(self) -> bool:
        return self.kind.is_qualifying

    def describe(self) -> str:
        """Return a one-line human readable description of the event."""
        if self.kind is ChangeKind.RENAMED and self.old_path:
            return f"{self.kind.value}: {self.old_path} -> {self.path}"
        if self.kind is ChangeKind.WATCH_ERROR:
            return f"{self.kind.value}: {self.path}: {self.error!r}"
        return f"{self.kind.value}: {self.path}"


@dataclass(frozen=True)
class WatchTarget:
    """An absolute path under observation.

    Directories are watched recursively. A single file is watched through its
    containing directory, with events filtered down to the file's name.
    """

    path: Path
    is_directory: bool

    @property
    def watch_dir(self) -> Path:
        """The directory handed to the OS notification facility."""
        return self.path if self.is_directory else self.path.parent

    @property
    def recursive(self) -> bool:
        return self.is_directory

    @property
    def file_name(self) -> Optional[str]:
        return None if self.is_directory else self.path.name

    def matches(self, event_path: Union[str, Path]) -> bool:
        """Return True if an event on ``event_path`` belongs to this target."""
        if self.is_directory:
            return True
        candidate = Path(event_path)
        return candidate.name == self.path.name and candidate.parent == self.path.parent

    def __str__(self) -> str:
        return str(self.path)


def resolve_targets(paths: Iterable[str]) -> List[WatchTarget]:
    """Turn user-supplied paths into watch targets.

    Paths are expanded (``~``) and made absolute. Empty or nonexistent paths
    are skipped with a warning. Duplicates are dropped, keeping the first
    occurrence.

    Args:
        paths (Iterable[str]): Raw path strings from the command line.

    Returns:
        List[WatchTarget]: The valid targets, in the order given. May be empty.
    """
    targets: List[WatchTarget] = []
    seen = set()
    for raw in paths:
        if not raw or not raw.strip():
            logger.warning(f"Path {raw!r} is invalid and will be skipped.")
            continue
        try:
            path = Path(os.path.expanduser(raw)).absolute()
            is_dir = path.is_dir()
            exists = is_dir or path.is_file()
        except (OSError, RuntimeError) as e:
            logger.warning(f"Path {raw} could not be accessed and will be skipped: {e}")
            continue

        if not exists:
            logger.warning(f"Path {raw} is invalid and will be skipped.")
            continue

        target = WatchTarget(path=path, is_directory=is_dir)
        if target in seen:
            logger.debug(f"Duplicate path {raw} ignored.")
            continue
        seen.add(target)
        targets.append(target)
    return targets
