"""Daemon orchestration: stores, learning scheduler and directory watcher."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

from watchdog.observers.api import BaseObserver

from .classifier import MailClassifier
from .config import Config
from .dispatcher import ClassificationDispatcher
from .handles import StoreOpener, open_store, open_stores
from .maildir import ensure_mailbox_structure
from .scheduler import LearningScheduler
from .watcher import MailboxWatcher

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

LOGGER = logging.getLogger(__name__)
SIG_USR1 = getattr(signal, "SIGUSR1", None)


class DaemonError(RuntimeError):
    """Raised when a background task hit a fatal condition."""


class Daemon:
    """Run the watcher and the learning scheduler until asked to stop.

    Startup order is fixed: create missing maildir folders, open every store
    (a failure aborts before any task starts), start the scheduler, start the
    watcher, then block. Stores are closed exactly once on the way out, no
    matter which task ended the run.
    """

    def __init__(
        self,
        config: Config,
        *,
        classifier: MailClassifier | None = None,
        store_opener: StoreOpener = open_store,
        observer_factory: Callable[[], BaseObserver] | None = None,
        interval_source: Callable[[], str] | None = None,
    ) -> None:
        self._config = config
        self._classifier = classifier or MailClassifier(threshold=config.junk_threshold)
        self._store_opener = store_opener
        self._observer_factory = observer_factory
        self._interval_source = interval_source or (lambda: config.learn_interval)
        self._stop_event = threading.Event()
        self._status_event = threading.Event()
        self._started = threading.Event()
        self._fatal: BaseException | None = None
        self._installed_signals: dict[int, SignalHandler] = {}
        self._dispatcher: ClassificationDispatcher | None = None
        self._scheduler: LearningScheduler | None = None
        self._watcher: MailboxWatcher | None = None

    @property
    def started(self) -> threading.Event:
        """Set once every task is running."""

        return self._started

    @property
    def watcher(self) -> MailboxWatcher | None:
        return self._watcher

    @property
    def scheduler(self) -> LearningScheduler | None:
        return self._scheduler

    def run(self) -> None:
        self._install_signal_handlers()
        try:
            self._run()
        finally:
            self._restore_signal_handlers()
        if self._fatal is not None:
            raise DaemonError(str(self._fatal)) from self._fatal

    def stop(self) -> None:
        self._stop_event.set()

    def status_snapshot(self) -> dict[str, Any]:
        watcher = self._watcher
        scheduler = self._scheduler
        dispatcher = self._dispatcher
        report = scheduler.last_report if scheduler else None
        return {
            "mailboxes": [str(mailbox) for mailbox in self._config.maildirs],
            "watched": [str(mailbox) for mailbox in watcher.watched] if watcher else [],
            "dry_run": self._config.dry_run,
            "classification": dispatcher.metrics_snapshot() if dispatcher else {},
            "last_cycle": None
            if report is None
            else {
                "mailboxes": len(report.processed),
                "learned": report.learned,
                "unchanged": report.skipped,
                "backup_failures": len(report.backup_failures),
                "learn_failures": sum(len(keys) for keys in report.learn_failures.values()),
            },
        }

    def _run(self) -> None:
        mailboxes = self._config.maildirs
        for mailbox in mailboxes:
            ensure_mailbox_structure(mailbox)

        with open_stores(mailboxes, opener=self._store_opener) as handles:
            LOGGER.info("Opened %s store(s)", len(handles))
            self._dispatcher = ClassificationDispatcher(
                handles,
                self._classifier,
                dry_run=self._config.dry_run,
            )
            self._scheduler = LearningScheduler(
                mailboxes,
                handles,
                self._classifier,
                interval_source=self._interval_source,
                on_fatal=self._handle_fatal,
            )
            self._watcher = MailboxWatcher(
                mailboxes,
                self._dispatcher.dispatch,
                observer_factory=self._observer_factory,
            )
            try:
                self._scheduler.start()
                self._watcher.start()
                self._started.set()
                self._wait_for_stop()
            finally:
                self._watcher.stop()
                self._scheduler.stop()

    def _wait_for_stop(self) -> None:
        while not self._stop_event.is_set():
            try:
                if self._status_event.is_set():
                    self._status_event.clear()
                    self._dump_status()
                self._stop_event.wait(0.5)
            except KeyboardInterrupt:
                LOGGER.info("Interrupt received; shutting down.")
                self._stop_event.set()

    def _handle_fatal(self, error: BaseException) -> None:
        self._fatal = error
        self._stop_event.set()

    def _dump_status(self) -> None:
        LOGGER.info("\n".join(_format_status(self.status_snapshot())))

    def _install_signal_handlers(self) -> None:
        interested = tuple(
            sig for sig in (signal.SIGTERM, signal.SIGINT, SIG_USR1) if sig is not None
        )
        for sig in interested:
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except ValueError:
                # Not on the main thread.
                continue
            self._installed_signals[sig] = previous

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._installed_signals.items():
            try:
                signal.signal(sig, handler)
            except (TypeError, ValueError):  # pragma: no cover - unsupported handler
                continue
        self._installed_signals.clear()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if signum in (signal.SIGTERM, signal.SIGINT):
            LOGGER.info("Signal %s received; initiating shutdown.", signum)
            self._stop_event.set()
        elif SIG_USR1 is not None and signum == SIG_USR1:
            LOGGER.info("SIGUSR1 received; emitting daemon status.")
            self._status_event.set()


def _format_status(snapshot: dict[str, Any]) -> list[str]:
    lines = ["junkwatch status snapshot:"]
    watched = set(snapshot["watched"])
    for mailbox in snapshot["mailboxes"]:
        state = "watching" if mailbox in watched else "learn-only"
        lines.append(f"  - {mailbox}: {state}")
    counters = snapshot["classification"]
    if counters:
        lines.append(
            "  classified: "
            + " ".join(f"{name}={value}" for name, value in sorted(counters.items()))
        )
    cycle = snapshot["last_cycle"]
    if cycle:
        lines.append(
            "  last cycle: " + " ".join(f"{name}={value}" for name, value in cycle.items())
        )
    return lines


__all__ = ["Daemon", "DaemonError"]
