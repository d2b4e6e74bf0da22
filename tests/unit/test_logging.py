from __future__ import annotations

import logging
from pathlib import Path

import pytest

from junkwatch.config import ConfigError, LoggingConfig
from junkwatch.logging import ConsoleFormatter, configure_logging, level_from_string, task_name


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    watchdog_level = logging.getLogger("watchdog").level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("watchdog").setLevel(watchdog_level)


def test_configure_logging_writes_main_and_debug_files(tmp_path: Path, restore_root_logger) -> None:
    configure_logging(LoggingConfig(level="debug", debug_file=True), tmp_path)

    logger = logging.getLogger("junkwatch.test")
    logger.debug("debug detail")
    logger.info("started")
    for handler in logging.getLogger().handlers:
        handler.flush()

    main_log = (tmp_path / "logs" / "junkwatch.log").read_text(encoding="utf-8")
    debug_log = (tmp_path / "logs" / "debug.log").read_text(encoding="utf-8")
    assert "started" in main_log
    assert "debug detail" not in main_log
    assert "debug detail" in debug_log
    assert logging.getLogger("watchdog").level == logging.INFO


def test_level_from_string() -> None:
    assert level_from_string(" Warn ") == logging.WARNING
    with pytest.raises(ConfigError):
        level_from_string("loud")


def test_console_formatter_symbols() -> None:
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)

    assert ConsoleFormatter(use_color=False).format(record) == "X boom"
    assert ConsoleFormatter(use_color=True).format(record).endswith("\x1b[0m boom")


def test_console_formatter_tags_background_tasks() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "cannot learn", None, None)
    record.threadName = "junkwatch-learner"

    assert ConsoleFormatter(use_color=False).format(record) == "! [learner] cannot learn"


@pytest.mark.parametrize(
    ("thread_name", "expected"),
    [
        ("junkwatch-watcher", "watcher"),
        ("MainThread", None),
        ("junkwatch-", None),
        (None, None),
    ],
)
def test_task_name(thread_name, expected) -> None:
    assert task_name(thread_name) == expected
