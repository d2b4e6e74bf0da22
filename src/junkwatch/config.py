"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .types import Mailbox

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "JUNKWATCH_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/junkwatch/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/junkwatch")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_LEARN_INTERVAL = "24h"
DEFAULT_JUNK_THRESHOLD = 0.9

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    maildirs: list[Mailbox]
    learn_interval: str
    dry_run: bool
    junk_threshold: float
    logging: LoggingConfig


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    return _parse_config(_read_raw(resolve_config_path(path)))


def read_learn_interval(path: Path | str | None = None) -> str:
    """Re-read only ``learn_interval`` from the config file.

    Other keys are neither parsed nor validated.
    """

    raw = _read_raw(resolve_config_path(path))
    return _parse_learn_interval(raw.get("learn_interval"))


def resolve_config_path(explicit: Path | str | None = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def parse_duration(value: str) -> float:
    """Convert a duration string such as ``12h`` or ``1h30m`` into seconds.

    The accepted grammar is a sequence of decimal numbers each followed by a
    unit (``ns``, ``us``, ``ms``, ``s``, ``m``, ``h``). The result must be
    strictly positive.
    """

    if not isinstance(value, str):
        raise ConfigError(f"Duration must be a string, got {type(value).__name__}.")
    text = value.strip()
    if not text:
        raise ConfigError("Duration cannot be empty.")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if match is None:
            raise ConfigError(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        position = match.end()

    if total <= 0:
        raise ConfigError(f"Duration must be positive: {value!r}")
    return total


def _read_raw(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")
    return raw


def _parse_config(raw: dict[str, Any]) -> Config:
    root_dir = Path(raw.get("root_dir") or raw.get("rootdir") or DEFAULT_ROOT_DIR).expanduser()
    maildirs = _parse_maildirs(raw.get("maildirs"))
    learn_interval = _parse_learn_interval(raw.get("learn_interval"))
    dry_run = _parse_bool(raw.get("dry_run", False), "dry_run")
    junk_threshold = _parse_threshold(raw.get("junk_threshold"))
    logging_config = _parse_logging(raw.get("logging"))
    return Config(
        root_dir=root_dir,
        maildirs=maildirs,
        learn_interval=learn_interval,
        dry_run=dry_run,
        junk_threshold=junk_threshold,
        logging=logging_config,
    )


def _parse_maildirs(value: Any) -> list[Mailbox]:
    if value is None:
        raise ConfigError("At least one maildir must be configured.")
    if not isinstance(value, list):
        raise ConfigError("maildirs must be a list.")
    if not value:
        raise ConfigError("At least one maildir must be configured.")

    mailboxes: list[Mailbox] = []
    seen: set[Mailbox] = set()
    for idx, entry in enumerate(value, start=1):
        if isinstance(entry, dict):
            path = entry.get("path")
        else:
            path = entry
        if not isinstance(path, str) or not path.strip():
            raise ConfigError(f"maildirs[{idx}] requires a path.")
        mailbox = Mailbox(Path(path.strip()))
        if mailbox in seen:
            LOGGER.warning("Ignoring duplicate maildir %s", mailbox)
            continue
        seen.add(mailbox)
        mailboxes.append(mailbox)
    return mailboxes


def _parse_learn_interval(value: Any) -> str:
    if value is None:
        return DEFAULT_LEARN_INTERVAL
    text = str(value).strip()
    # An unparseable interval is rejected at load time.
    parse_duration(text)
    return text


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{field_name} must be a boolean.")


def _parse_threshold(value: Any) -> float:
    if value is None:
        return DEFAULT_JUNK_THRESHOLD
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError("junk_threshold must be a number.")
    threshold = float(value)
    if not 0.0 < threshold < 1.0:
        raise ConfigError("junk_threshold must be between 0 and 1 (exclusive).")
    return threshold


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "Config",
    "ConfigError",
    "LoggingConfig",
    "DEFAULT_LEARN_INTERVAL",
    "load_config",
    "parse_duration",
    "read_learn_interval",
    "resolve_config_path",
]
