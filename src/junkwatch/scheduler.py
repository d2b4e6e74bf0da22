"""Recurring backup-then-learn cycle over every mailbox."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Protocol

from .classifier import LearnError
from .config import ConfigError, parse_duration
from .maildir import MaildirError, list_classified
from .store import BACKUP_FILENAME, Store, StoreError
from .types import CycleReport, Mailbox

LOGGER = logging.getLogger(__name__)

Enumerator = Callable[[Iterable[Mailbox]], Mapping[Mailbox, Sequence[str]]]


class Learner(Protocol):
    def learn(self, store: Store, mailbox: Mailbox, key: str) -> bool: ...


class LearningCycleError(RuntimeError):
    """Raised when a learning cycle cannot be scheduled or completed safely."""


class LearningScheduler:
    """Back up and relearn every mailbox at a fixed, re-read interval.

    The interval is fetched from ``interval_source`` at the start of every
    cycle, so configuration edits apply on the next tick. The first cycle runs
    as soon as the scheduler starts. Mailboxes are processed one after another:
    each store is snapshotted to ``<mailbox>/store.backup`` and then taught
    every message currently sitting in the good and junk folders.

    Per-mailbox backup failures and per-message learn failures are logged and
    skipped. Anything else ends the loop and is handed to ``on_fatal``: an
    invalid interval, a mailbox that cannot be listed, or an unexpected error.
    """

    def __init__(
        self,
        mailboxes: Iterable[Mailbox],
        handles: Mapping[Mailbox, Store],
        learner: Learner,
        *,
        interval_source: Callable[[], str],
        on_fatal: Callable[[BaseException], None] | None = None,
        enumerate_messages: Enumerator = list_classified,
    ) -> None:
        self._mailboxes = tuple(mailboxes)
        self._handles = handles
        self._learner = learner
        self._interval_source = interval_source
        self._on_fatal = on_fatal
        self._enumerate = enumerate_messages
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_cycle_at: float | None = None
        self._last_report: CycleReport | None = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="junkwatch-learner", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():  # pragma: no cover - long running cycle
                LOGGER.warning("Learning cycle still running after %ss", timeout)
        self._thread = None

    def read_interval(self) -> float:
        """Return the current interval in seconds."""

        try:
            return parse_duration(self._interval_source())
        except ConfigError as exc:
            raise LearningCycleError(f"Cannot parse duration for learning intervals: {exc}") from exc

    def run_cycle(self) -> CycleReport:
        """Run one backup/learn pass over every mailbox."""

        now = time.monotonic()
        since_previous = None if self._last_cycle_at is None else now - self._last_cycle_at
        self._last_cycle_at = now
        report = CycleReport(since_previous=since_previous)
        for mailbox in self._mailboxes:
            if self._stop_event.is_set():
                LOGGER.info("Learning cycle interrupted by shutdown")
                break
            handle = self._handles[mailbox]
            self._backup(mailbox, handle, report)
            self._learn(mailbox, handle, report)
            report.processed.append(mailbox)
        self._last_report = report
        LOGGER.info(
            "Learning cycle finished: %s mailbox(es), %s learned, %s unchanged, %s failure(s) in %.1fs",
            len(report.processed),
            report.learned,
            report.skipped,
            sum(len(keys) for keys in report.learn_failures.values()) + len(report.backup_failures),
            report.elapsed,
        )
        return report

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                interval = self.read_interval()
                self.run_cycle()
                if self._stop_event.wait(interval):
                    break
        except LearningCycleError as exc:
            LOGGER.critical("%s", exc)
            self._report_fatal(exc)
        except Exception as exc:
            LOGGER.critical("Learning task failed: %r", exc, exc_info=True)
            self._report_fatal(exc)

    def _report_fatal(self, error: BaseException) -> None:
        if self._on_fatal is not None:
            self._on_fatal(error)

    def _backup(self, mailbox: Mailbox, handle: Store, report: CycleReport) -> None:
        destination = mailbox.path / BACKUP_FILENAME
        try:
            handle.write_snapshot(destination)
        except (StoreError, OSError) as exc:
            LOGGER.error("Backup creation failed for %s: %s", mailbox, exc)
            report.backup_failures[mailbox] = str(exc)
            return
        LOGGER.debug("Backed up store for %s to %s", mailbox, destination)

    def _learn(self, mailbox: Mailbox, handle: Store, report: CycleReport) -> None:
        try:
            keys = self._enumerate([mailbox])[mailbox]
        except (MaildirError, OSError, KeyError) as exc:
            raise LearningCycleError(f"Cannot load mails for {mailbox}: {exc}") from exc

        for key in keys:
            if self._stop_event.is_set():
                break
            try:
                changed = self._learner.learn(handle, mailbox, key)
            except LearnError as exc:
                LOGGER.warning("Cannot learn mail %s (mailbox=%s): %s", key, mailbox, exc)
                report.record_learn_failure(mailbox, key)
                continue
            if changed:
                report.learned += 1
            else:
                report.skipped += 1

        try:
            handle.flush()
        except StoreError as exc:
            LOGGER.error("Cannot persist store for %s: %s", mailbox, exc)


__all__ = ["LearningCycleError", "LearningScheduler"]
