"""Configuration management for watchcat.

This module builds the launch configuration from defaults, an optional INI
config file and command-line arguments. The result is a frozen
:class:`LaunchConfig` that is read-only for the rest of the process lifetime.

Priority Order:
    1. CLI Arguments
    2. Config File
    3. Defaults

Config File Locations (first existing file wins):
    * ``./watchcat.ini``
    * ``$XDG_CONFIG_HOME/watchcat/config.ini`` (Linux/macOS)
    * ``%APPDATA%\\watchcat\\config.ini`` (Windows)
    * ``~/.config/watchcat/config.ini`` (Fallback)

The file uses a single ``[watchcat]`` section whose keys match the
:class:`LaunchConfig` attribute names (``executable``, ``arguments``,
``wait_timeout``, ``launch_delay``, ``no_window``, ``load_profile``,
``verbose``, ``log_file``, ``log_level``). Watched paths always come from the
command line.
"""

from __future__ import annotations

import logging
import math
import os
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["LaunchConfig", "load_config", "split_trailing_args", "WAIT_FOREVER"]

CONFIG_SECTION = "watchcat"
WAIT_FOREVER = -1.0
ARGS_FLAGS = ("-a", "--args")

_TRUE_STRINGS = ("true", "1", "yes", "on")


@dataclass(frozen=True)
class LaunchConfig:
    """Define the resolved launch configuration.

    Attributes:
        paths (List[str]): Raw paths to watch, as given on the command line.
        executable (Optional[str]): Program to launch on change. None disables launching.
        arguments (str): Argument string passed to the program. Defaults to "".
        wait_timeout (float): 0 = don't wait, -1 = wait indefinitely,
            positive = bounded wait in seconds. Defaults to 0.
        launch_delay (float): Debounce window in seconds. 0 launches once per event.
        no_window (bool): Don't create a new window for the program (Windows only).
        load_profile (bool): Load the user's profile/environment for the program.
        verbose (bool): Emit diagnostic lines for every transition.
        log_file (Optional[str]): Absolute path to a log file. Defaults to None.
        log_level (str): Logging level name. Defaults to "INFO".
    """

    paths: List[str] = field(default_factory=list)
    executable: Optional[str] = None
    arguments: str = ""
    wait_timeout: float = 0.0
    launch_delay: float = 0.0
    no_window: bool = False
    load_profile: bool = False
    verbose: bool = False
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @property
    def waits(self) -> bool:
        """Return True if launches wait for the program to exit."""
        return self.wait_timeout != 0

    @property
    def waits_forever(self) -> bool:
        return self.wait_timeout == WAIT_FOREVER

    @property
    def debounces(self) -> bool:
        return self.launch_delay > 0


def split_trailing_args(argv: Sequence[str]) -> Tuple[List[str], Optional[str]]:
    """Split ``argv`` at the first ``-a``/``--args`` token.

    Every token after the flag belongs to the launched program and is joined
    verbatim with single spaces, without further parsing or escaping.
    ``--args=VALUE`` also starts the trailing section, with VALUE as its first
    token. Scanning stops at a ``--`` end-of-options marker, so later tokens
    stay positional.

    Args:
        argv (Sequence[str]): Command-line tokens, without the program name.

    Returns:
        Tuple[List[str], Optional[str]]: The tokens left for the option parser,
        and the argument string (None if the flag was not given).

    Examples:
        >>> split_trailing_args(["src", "-e", "make", "-a", "-C", "build", "all"])
        (['src', '-e', 'make'], '-C build all')
        >>> split_trailing_args(["src", "--args=--fast", "-v"])
        (['src'], '--fast -v')
        >>> split_trailing_args(["src"])
        (['src'], None)
    """
    for index, token in enumerate(argv):
        if token == "--":
            break
        if token in ARGS_FLAGS:
            return list(argv[:index]), " ".join(argv[index + 1:])
        if token.startswith("--args="):
            head = token[len("--args="):]
            return list(argv[:index]), " ".join([head, *argv[index + 1:]]).strip()
    return list(argv), None


def _get_config_file_paths() -> List[str]:
    """Return a list of potential config file paths in order of priority.

    Returns:
        List[str]: A list of file paths to check for configuration.
    """
    paths = ["watchcat.ini"]

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        paths.append(os.path.join(os.path.expanduser(xdg_config_home), "watchcat", "config.ini"))
    elif os.name == "nt" and os.environ.get("APPDATA"):
        paths.append(os.path.join(os.path.expanduser(os.environ["APPDATA"]), "watchcat", "config.ini"))
    else:
        paths.append(os.path.join(os.path.expanduser("~"), ".config", "watchcat", "config.ini"))
    return paths


def _read_config_file() -> Dict[str, Any]:
    """Read the first existing config file into a dict of raw string values."""
    values: Dict[str, Any] = {}
    for path in _get_config_file_paths():
        if not os.path.isfile(path):
            continue
        logger.debug(f"Loading config from {path}")
        parser = ConfigParser(interpolation=None)
        try:
            parser.read(path, encoding="utf-8-sig")
            if CONFIG_SECTION in parser:
                for key, value in parser[CONFIG_SECTION].items():
                    # Watched paths come only from the command line
                    if key == "paths":
                        continue
                    if value is not None and value != "":
                        values[key] = value
        except (ConfigParserError, UnicodeDecodeError, OSError) as e:
            logger.error(f"Failed to parse config file {path}: {e}")
            values = {}
        break
    return values


def _validate_log_path(path_str: str) -> str:
    """Resolve the log file path and verify it can be written.

    Args:
        path_str (str): The raw log file path (``~`` is expanded).

    Returns:
        str: The absolute log file path.

    Raises:
        ValueError: If the path is a directory, or cannot be created or written.
    """
    path = Path(os.path.expanduser(path_str)).absolute()
    if path.exists() and not path.is_file():
        raise ValueError(f"Invalid path: Log file is not a regular file: {path}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a"):
            pass
    except PermissionError as e:
        raise ValueError(f"Write permission denied for log file: {path}") from e
    except OSError as e:
        raise ValueError(f"Cannot create log file: {e}") from e
    return str(path)


def _to_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid number for {name}: {value}") from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def load_config(args: Dict[str, Any]) -> LaunchConfig:
    """Load and validate the launch configuration.

    Args:
        args (Dict[str, Any]): Parsed CLI arguments, typically
            ``vars(parser.parse_args())``. Values of None are ignored so the
            config file and defaults can take effect. Unknown keys are dropped.

    Returns:
        LaunchConfig: The fully resolved and validated configuration.

    Raises:
        ValueError: If a numeric value is malformed or out of range, the log
            level is unknown, or the log file cannot be written.

    Examples:
        >>> config = load_config({"paths": ["."], "wait_timeout": -1})
        >>> config.waits_forever
        True
    """
    config_values: Dict[str, Any] = {
        "paths": [],
        "executable": None,
        "arguments": "",
        "wait_timeout": 0.0,
        "launch_delay": 0.0,
        "no_window": False,
        "load_profile": False,
        "verbose": False,
        "log_file": None,
        "log_level": "INFO",
    }

    config_values.update(_read_config_file())

    for key, value in args.items():
        if value is not None:
            config_values[key] = value

    wait_timeout = _to_float("wait_timeout", config_values["wait_timeout"])
    if not math.isfinite(wait_timeout) or (wait_timeout < 0 and wait_timeout != WAIT_FOREVER):
        raise ValueError(f"wait_timeout must be -1, 0 or positive, got {wait_timeout}")
    config_values["wait_timeout"] = wait_timeout

    launch_delay = _to_float("launch_delay", config_values["launch_delay"])
    if not math.isfinite(launch_delay) or launch_delay < 0:
        raise ValueError(f"launch_delay must be non-negative, got {launch_delay}")
    config_values["launch_delay"] = launch_delay

    for flag in ("no_window", "load_profile", "verbose"):
        config_values[flag] = _to_bool(config_values[flag])

    executable = config_values["executable"]
    if executable is not None and not str(executable).strip():
        executable = None
    config_values["executable"] = executable

    config_values["arguments"] = str(config_values["arguments"] or "")
    config_values["paths"] = [str(p) for p in config_values["paths"] or []]

    if config_values["log_file"]:
        config_values["log_file"] = _validate_log_path(str(config_values["log_file"]))

    if config_values["verbose"]:
        config_values["log_level"] = "DEBUG"

    level = str(config_values["log_level"]).upper()
    if not isinstance(getattr(logging, level, None), int):
        raise ValueError(f"Invalid log level: {config_values['log_level']}")
    config_values["log_level"] = level

    config_fields = {f.name for f in fields(LaunchConfig)}
    filtered_values = {k: v for k, v in config_values.items() if k in config_fields}

    return LaunchConfig(**filtered_values)
