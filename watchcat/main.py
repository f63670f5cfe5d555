"""Main entry point for watchcat.

This module handles the command-line interface (CLI), configuration loading,
logging setup, and the main wait loop. It wires the resolved watch targets
into a :class:`~watchcat.coordinator.WatchCoordinator` and hands its shutdown
to a :class:`~watchcat.lifecycle.LifecycleController`.

Key Responsibilities:
    - CLI Argument Parsing: paths, --executable, --args (takes every remaining
      token), --wait-timeout, --launch-delay, --no-window, --load-profile, --verbose.
    - Logging: plain ``[asctime] [levelname] name: message`` lines on stdout,
      warnings and errors highlighted on a terminal, optional rotating log file.
    - Exit Codes: 0 on clean shutdown, 1 if no path could be watched or the
      configuration is invalid, 2 on argument errors.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional, Sequence

try:
    from watchcat import __version__
    from watchcat.config import load_config, split_trailing_args
    from watchcat.coordinator import WatchCoordinator
    from watchcat.events import resolve_targets
    from watchcat.lifecycle import LifecycleController
except ImportError as e:
    if "watchdog" in str(e):
        sys.exit(f"Error: Missing dependency: {e}. Please install required packages.")
    raise

# Logging configuration constants
LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class ConsoleFormatter(logging.Formatter):
    """Formatter that colors warnings and errors with ANSI escapes."""

    COLORS = {
        logging.DEBUG: "\033[90m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_color: bool = True) -> None:
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_color else None
        if color:
            return f"{color}{message}{self.RESET}"
        return message


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except (OSError, ValueError):
        return False


def setup_logging(log_level: str, log_file: Optional[str]) -> None:
    """Configure the logging system.

    Sets up console logging (stdout) and optional file logging with rotation.

    Logging Practices:
        - **Levels**:
            - ``INFO``: Startup, launches and shutdown.
            - ``WARNING``: Recoverable issues (skipped paths, watcher errors).
            - ``ERROR``: Failed launches, failed watchers.
            - ``DEBUG``: Every change event and suspend/resume transition (``--verbose``).
        - **Format**: ``[asctime] [levelname] name: message``
        - **Rotation**: Log files are rotated at 10MB (keeping 5 backups).

    Args:
        log_level (str): The logging level (e.g., "DEBUG", "INFO").
        log_file (Optional[str]): Optional path to a log file.

    Raises:
        ValueError: If the provided log_level is not a valid logging level.
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    handlers: List[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        ConsoleFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT, use_color=_stream_supports_color(sys.stdout))
    )
    handlers.append(console_handler)

    if log_file:
        try:
            # Rotate at 10MB, keep 5 backups
            file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            handlers.append(file_handler)
        except Exception as e:
            # Fallback to console only, but print warning to stderr since logging isn't setup yet
            sys.stderr.write(f"Warning: Failed to setup log file '{log_file}': {e}\n")

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the ``watchcat`` command."""
    parser = argparse.ArgumentParser(
        prog="watchcat",
        description="Watch files or directories and launch a program when they change.",
        epilog="Everything after -a/--args is passed to the program as its argument string.",
    )
    parser.add_argument(
        "paths", nargs="+", metavar="PATH", help="Files or directories to watch (directories recursively)."
    )
    parser.add_argument(
        "-e", "--executable", type=str, default=None, help="Program to launch when changes are detected."
    )
    parser.add_argument(
        "-a", "--args", dest="arguments", metavar="ARGS", default=None,
        help="Arguments for the program. Every token after this flag is passed verbatim.",
    )
    parser.add_argument(
        "-t", "--wait-timeout", type=float, default=None,
        help="Max seconds to wait for the program to exit; -1 waits indefinitely. "
        "Changes are ignored while waiting. Default: 0 (don't wait).",
    )
    parser.add_argument(
        "-d", "--launch-delay", type=float, default=None,
        help="Seconds to delay the launch; changes during the delay restart it. Default: 0.",
    )
    parser.add_argument(
        "-w", "--no-window", action="store_const", const=True, default=None,
        help="Do not create a new window for the program (Windows only).",
    )
    parser.add_argument(
        "-p", "--load-profile", action="store_const", const=True, default=None,
        help="Load the user's profile for the program (runs it through a login shell on POSIX).",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_const", const=True, default=None, help="Verbose output."
    )
    parser.add_argument("--log-file", type=str, default=None, help="Path to the log file.")
    parser.add_argument(
        "--log-level", type=str, default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO"
    )
    parser.add_argument(
        "--ignore-stdin", action="store_true",
        help="Keep running when standard input closes (for use without a terminal).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Execute the main application logic.

    Parse command-line arguments, load configuration, set up logging, start
    the watchers and block until a signal arrives or standard input closes.

    Args:
        argv (Optional[Sequence[str]]): Arguments without the program name.
            Defaults to ``sys.argv[1:]``.

    Raises:
        SystemExit: On argument errors (code 2), invalid configuration or when
            no path can be watched (code 1).

    Example:
        $ watchcat src tests -d 0.5 -t -1 -e pytest -a -q tests
    """
    if argv is None:
        argv = sys.argv[1:]

    tokens, trailing_args = split_trailing_args(argv)
    parser = build_parser()
    args = parser.parse_args(tokens)
    values = vars(args)
    ignore_stdin = values.pop("ignore_stdin", False)
    if trailing_args is not None:
        values["arguments"] = trailing_args

    # Bootstrap logging to capture config loading events
    bootstrap_handler = logging.StreamHandler(sys.stdout)
    bootstrap_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    bootstrap_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=bootstrap_level, handlers=[bootstrap_handler], force=True)

    try:
        config = load_config(values)
        setup_logging(config.log_level, config.log_file)
    except ValueError as e:
        sys.exit(f"Configuration Error: {e}")
    logger.debug(f"Configuration loaded: {config}")
    logger.debug(f"Starting watchcat v{__version__} (PID: {os.getpid()})")

    targets = resolve_targets(config.paths)
    if not targets:
        logger.error("No valid paths to watch.")
        sys.exit(1)

    coordinator = WatchCoordinator(config, targets)
    controller = LifecycleController(coordinator.shutdown, watch_input=not ignore_stdin)
    controller.install()

    try:
        if coordinator.start() == 0:
            logger.error("No watcher could be started.")
            sys.exit(1)

        if not config.executable:
            logger.info("No executable given; changes will not launch anything.")
        if not ignore_stdin:
            logger.info("Press Enter to exit.")

        controller.wait()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, stopping...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        controller.shutdown()
        controller.uninstall()


if __name__ == "__main__":
    main()
