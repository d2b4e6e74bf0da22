"""Core immutable data structures used throughout junkwatch."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Outcome(str, Enum):
    """Result of classifying a single message."""

    GOOD = "good"
    JUNK = "junk"
    FAILED = "failed"


@dataclass(frozen=True)
class Mailbox:
    """A watched maildir, identified by its absolute path."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path).expanduser().absolute())

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class MessageRef:
    """A message inside a mailbox, addressed by a mailbox-relative key."""

    mailbox: Mailbox
    key: str


@dataclass(frozen=True)
class ClassificationResult:
    """Classifier decision for one message."""

    outcome: Outcome
    junk_probability: float | None
    destination: Path | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class StoreStats:
    """Counters describing what a store has learned."""

    good_count: int
    junk_count: int
    good_words: int
    junk_words: int


@dataclass
class CycleReport:
    """State collected while a single learning cycle runs."""

    since_previous: float | None
    started_at: float = field(default_factory=time.monotonic)
    processed: list[Mailbox] = field(default_factory=list)
    learned: int = 0
    skipped: int = 0
    backup_failures: dict[Mailbox, str] = field(default_factory=dict)
    learn_failures: dict[Mailbox, list[str]] = field(default_factory=dict)

    def record_learn_failure(self, mailbox: Mailbox, key: str) -> None:
        self.learn_failures.setdefault(mailbox, []).append(key)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


__all__ = [
    "ClassificationResult",
    "CycleReport",
    "Mailbox",
    "MessageRef",
    "Outcome",
    "StoreStats",
]
