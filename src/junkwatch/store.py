"""Per-mailbox word-frequency store with file locking and snapshot backups."""

from __future__ import annotations

import fcntl
import logging
import math
import pickle
import threading
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import IO, Any

import numpy as np

from .maildir import GOOD_LABEL, JUNK_LABEL
from .types import StoreStats

LOGGER = logging.getLogger(__name__)

STORE_FILENAME = "store.db"
BACKUP_FILENAME = "store.backup"
LOCK_FILENAME = "store.lock"
FORMAT_VERSION = 1
LABELS = (GOOD_LABEL, JUNK_LABEL)


class StoreError(RuntimeError):
    """Raised when the store cannot be read, written or used."""


class StoreOpenError(StoreError):
    """Raised when a store cannot be opened."""


class StoreLockedError(StoreOpenError):
    """Raised when another handle already holds the store."""


class Store:
    """Learned word statistics for a single mailbox.

    Opening a store takes an advisory ``flock`` on ``store.lock`` next to the
    data file: exclusive for live handles, shared for read-only ones. Both are
    non-blocking, so a second live handle (or a read-only handle while a live
    one exists) fails immediately with :class:`StoreLockedError`.

    Word counts are document frequencies: each learned message contributes at
    most one to the count of every distinct token it contains. All reads and
    mutations are serialised by an internal lock; disk writes copy the state
    under that lock and serialise outside of it.
    """

    def __init__(self, directory: Path, *, read_only: bool = False) -> None:
        self.directory = Path(directory).expanduser()
        self.path = self.directory / STORE_FILENAME
        self.read_only = read_only
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._counts: dict[str, dict[str, int]] = {label: {} for label in LABELS}
        self._totals: dict[str, int] = {label: 0 for label in LABELS}
        self._learned: dict[str, str] = {}
        self._dirty = False
        self._closed = False
        self._lock_handle = self._acquire_file_lock()
        try:
            self._load()
        except BaseException:
            self._release_file_lock()
            raise

    def __enter__(self) -> Store:
        return self

    def __exit__(self, _exc_type, _exc, _tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def train(self, message_id: str, tokens: Iterable[str], label: str) -> bool:
        """Record a message as ``label``.

        Returns False when the message was already learned with that label. A
        message previously learned with the other label is moved over.
        """

        if label not in LABELS:
            raise StoreError(f"Unknown label: {label}")
        words = frozenset(tokens)
        with self._lock:
            self._ensure_writable()
            previous = self._learned.get(message_id)
            if previous == label:
                return False
            if previous is not None:
                self._adjust(previous, words, -1)
            self._adjust(label, words, 1)
            self._learned[message_id] = label
            self._dirty = True
            return True

    def learned_label(self, message_id: str) -> str | None:
        with self._lock:
            return self._learned.get(message_id)

    def junk_probability(self, tokens: Iterable[str]) -> float | None:
        """Return P(junk | tokens), or None until both classes have been learned."""

        words = sorted(set(tokens))
        with self._lock:
            self._ensure_open()
            good_total = self._totals[GOOD_LABEL]
            junk_total = self._totals[JUNK_LABEL]
            if good_total == 0 or junk_total == 0:
                return None
            good_counts = self._counts[GOOD_LABEL]
            junk_counts = self._counts[JUNK_LABEL]
            good = np.array([good_counts.get(word, 0) for word in words], dtype=float)
            junk = np.array([junk_counts.get(word, 0) for word in words], dtype=float)

        known = (good + junk) > 0
        good = good[known]
        junk = junk[known]
        log_junk = math.log(junk_total) + np.log((junk + 1.0) / (junk_total + 2.0)).sum()
        log_good = math.log(good_total) + np.log((good + 1.0) / (good_total + 2.0)).sum()
        return float(np.exp(log_junk - np.logaddexp(log_junk, log_good)))

    def stats(self) -> StoreStats:
        with self._lock:
            self._ensure_open()
            return StoreStats(
                good_count=self._totals[GOOD_LABEL],
                junk_count=self._totals[JUNK_LABEL],
                good_words=len(self._counts[GOOD_LABEL]),
                junk_words=len(self._counts[JUNK_LABEL]),
            )

    def write_snapshot(self, destination: Path) -> Path:
        """Write a consistent copy of the current state to ``destination``."""

        with self._lock:
            self._ensure_open()
            payload = self._payload()
        self._atomic_write(Path(destination), payload)
        return Path(destination)

    def flush(self) -> bool:
        """Persist pending changes. Returns True when something was written."""

        if self.read_only:
            return False
        with self._write_lock:
            with self._lock:
                self._ensure_open()
                if not self._dirty:
                    return False
                payload = self._payload()
                self._dirty = False
            try:
                self._atomic_write(self.path, payload)
            except StoreError:
                with self._lock:
                    self._dirty = True
                raise
        return True

    def close(self) -> None:
        """Flush pending changes and release the file lock. Idempotent."""

        if self._closed:
            return
        try:
            self.flush()
        finally:
            with self._lock:
                self._closed = True
                self._release_file_lock()

    def _adjust(self, label: str, words: frozenset[str], delta: int) -> None:
        counts = self._counts[label]
        for word in words:
            value = counts.get(word, 0) + delta
            if value > 0:
                counts[word] = value
            else:
                counts.pop(word, None)
        self._totals[label] = max(0, self._totals[label] + delta)

    def _payload(self) -> dict[str, Any]:
        return {
            "version": FORMAT_VERSION,
            "counts": {label: dict(counts) for label, counts in self._counts.items()},
            "totals": dict(self._totals),
            "learned": dict(self._learned),
        }

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("rb") as handle:
                payload = pickle.load(handle)
        except Exception as exc:
            raise StoreOpenError(f"Cannot load store {self.path}: {exc}") from exc
        if not isinstance(payload, dict) or payload.get("version") != FORMAT_VERSION:
            raise StoreOpenError(f"Unsupported store format in {self.path}")
        counts = payload.get("counts", {})
        totals = payload.get("totals", {})
        for label in LABELS:
            self._counts[label] = dict(counts.get(label, {}))
            self._totals[label] = int(totals.get(label, 0))
        self._learned = dict(payload.get("learned", {}))

    def _atomic_write(self, target: Path, payload: dict[str, Any]) -> None:
        def _write(tmp_path: Path) -> None:
            with tmp_path.open("wb") as handle:
                pickle.dump(payload, handle, protocol=pickle.HIGHEST_PROTOCOL)

        self._replace_atomically(target, _write)

    @staticmethod
    def _replace_atomically(target: Path, writer: Callable[[Path], None]) -> None:
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            writer(tmp_path)
            tmp_path.replace(target)
        except OSError as exc:
            raise StoreError(f"Cannot write {target}: {exc}") from exc
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def _acquire_file_lock(self) -> IO[str]:
        lock_path = self.directory / LOCK_FILENAME
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            handle = lock_path.open("a", encoding="utf-8")
        except OSError as exc:
            raise StoreOpenError(f"Cannot open lock file {lock_path}: {exc}") from exc
        mode = fcntl.LOCK_SH if self.read_only else fcntl.LOCK_EX
        try:
            fcntl.flock(handle.fileno(), mode | fcntl.LOCK_NB)
        except OSError as exc:
            handle.close()
            raise StoreLockedError(f"Store {self.directory} is locked by another handle") from exc
        return handle

    def _release_file_lock(self) -> None:
        handle = self._lock_handle
        if handle is None or handle.closed:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError(f"Store {self.directory} is closed")

    def _ensure_writable(self) -> None:
        self._ensure_open()
        if self.read_only:
            raise StoreError(f"Store {self.directory} is opened read-only")


__all__ = [
    "BACKUP_FILENAME",
    "STORE_FILENAME",
    "Store",
    "StoreError",
    "StoreLockedError",
    "StoreOpenError",
]
