"""Logging setup for the junkwatch daemon and its commands."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
MAIN_LOG_NAME = "junkwatch.log"
DEBUG_LOG_NAME = "debug.log"
TASK_THREAD_PREFIX = "junkwatch-"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleFormatter(logging.Formatter):
    """One-letter level mark, the background task (if any), then the message.

    Records from the watcher and learner threads are tagged ``[watcher]`` and
    ``[learner]``; the main thread is left untagged.
    """

    MARKS: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("D", "36"),
        logging.INFO: ("I", "32"),
        logging.WARNING: ("!", "33"),
        logging.ERROR: ("X", "31"),
        logging.CRITICAL: ("X", "35"),
    }

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        mark, color = self.MARKS.get(record.levelno, ("?", "37"))
        if self.use_color:
            mark = f"\x1b[{color}m{mark}\x1b[0m"
        message = super().format(record)
        task = task_name(record.threadName)
        if task:
            return f"{mark} [{task}] {message}"
        return f"{mark} {message}"


def task_name(thread_name: str | None) -> str | None:
    """Return ``learner`` for ``junkwatch-learner`` and None for other threads."""

    if thread_name and thread_name.startswith(TASK_THREAD_PREFIX):
        return thread_name[len(TASK_THREAD_PREFIX) :] or None
    return None


def configure_logging(logging_config: LoggingConfig, root_dir: Path) -> None:
    """Log to ``<root_dir>/logs`` and to stderr, replacing any earlier setup."""

    level = level_from_string(logging_config.level)
    log_dir = (root_dir / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ConsoleFormatter(_is_tty(console.stream)))
    handlers: list[logging.Handler] = [_file_handler(log_dir / MAIN_LOG_NAME, logging.INFO), console]
    if logging_config.debug_file:
        handlers.append(_file_handler(log_dir / DEBUG_LOG_NAME, logging.DEBUG))

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # watchdog logs every raw inotify event at DEBUG.
    logging.getLogger("watchdog").setLevel(max(level, logging.INFO))


def level_from_string(level: str) -> int:
    try:
        return LEVELS[level.strip().upper()]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _is_tty(stream) -> bool:
    return bool(getattr(stream, "isatty", lambda: False)())


__all__ = ["ConsoleFormatter", "configure_logging", "level_from_string", "task_name"]
