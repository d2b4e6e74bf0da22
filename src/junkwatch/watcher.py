"""Filesystem watcher feeding newly delivered mail to a single consumer."""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable, Iterable
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .maildir import intake_dir, split_intake_path
from .types import Mailbox, MessageRef

LOGGER = logging.getLogger(__name__)


class MailboxWatcher:
    """Watch the intake folder of every mailbox through one observer.

    Creation events are queued by the observer thread and consumed in order by
    a dedicated thread, which parses each path and hands the resulting
    :class:`MessageRef` to ``on_message``. A mailbox whose folder cannot be
    watched is logged and left out; the others keep working.
    """

    def __init__(
        self,
        mailboxes: Iterable[Mailbox],
        on_message: Callable[[MessageRef], Any],
        *,
        observer_factory: Callable[[], BaseObserver] | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._mailboxes = tuple(mailboxes)
        self._by_path = {str(mailbox.path): mailbox for mailbox in self._mailboxes}
        self._on_message = on_message
        self._observer_factory = observer_factory or Observer
        self._poll_interval = poll_interval
        self._events: queue.Queue[str | BaseException] = queue.Queue()
        self._observer: BaseObserver | None = None
        self._consumer: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._watched: list[Mailbox] = []
        self._lock = threading.Lock()

    @property
    def watched(self) -> tuple[Mailbox, ...]:
        """Mailboxes whose intake folder is being watched."""

        return tuple(self._watched)

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start the observer, register every intake folder, start consuming."""

        with self._lock:
            if self._observer is not None:
                return
            self._stop_event.clear()
            observer = self._observer_factory()
            observer.start()
            handler = _IntakeEventHandler(self)
            self._watched = []
            for mailbox in self._mailboxes:
                directory = intake_dir(mailbox)
                try:
                    observer.schedule(handler, str(directory), recursive=False)
                except OSError as exc:
                    LOGGER.error(
                        "Cannot watch directory %s; live classification disabled for %s: %s",
                        directory,
                        mailbox,
                        exc,
                    )
                    continue
                self._watched.append(mailbox)
                LOGGER.info("Watching %s", directory)
            self._observer = observer
            self._consumer = threading.Thread(
                target=self._serve,
                name="junkwatch-watcher",
                daemon=True,
            )
            self._consumer.start()

    def stop(self) -> None:
        """Stop the observer and the consumer thread."""

        with self._lock:
            observer = self._observer
            consumer = self._consumer
            if observer is None:
                return
            self._stop_event.set()
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join directory observer thread")
            if consumer is not None and consumer is not threading.current_thread():
                consumer.join(timeout=5)
            self._observer = None
            self._consumer = None
            self._watched = []

    def submit(self, path: str | bytes) -> None:
        """Queue a raw created-file path for the consumer."""

        self._events.put(os.fsdecode(path))

    def report_error(self, error: BaseException) -> None:
        """Queue a watcher-internal error; it is logged and the loop continues."""

        self._events.put(error)

    def _serve(self) -> None:
        observer_lost = False
        while not self._stop_event.is_set():
            try:
                item = self._events.get(timeout=self._poll_interval)
            except queue.Empty:
                observer = self._observer
                if observer is not None and not observer_lost and not _alive(observer):
                    observer_lost = True
                    LOGGER.error("Directory observer stopped unexpectedly")
                continue
            self._process(item)

    def _process(self, item: str | BaseException) -> None:
        if isinstance(item, BaseException):
            LOGGER.error("Problem with directory watcher: %s", item)
            return
        ref = split_intake_path(item, self._by_path)
        if ref is None:
            LOGGER.debug("Ignoring event outside intake folders: %s", item)
            return
        try:
            self._on_message(ref)
        except Exception:
            LOGGER.exception("Message callback failed for %s (mailbox=%s)", ref.key, ref.mailbox)


class _IntakeEventHandler(FileSystemEventHandler):
    """Forward file creation events to the watcher queue."""

    def __init__(self, watcher: MailboxWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        try:
            self._watcher.submit(event.src_path)
        except Exception as exc:  # pragma: no cover - decoding failures only
            self._watcher.report_error(exc)


def _alive(observer: BaseObserver) -> bool:
    is_alive = getattr(observer, "is_alive", None)
    return True if is_alive is None else bool(is_alive())


__all__ = ["MailboxWatcher"]
