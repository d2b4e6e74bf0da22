"""Route message references from the watcher to the classifier."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .classifier import ClassifyError
from .store import Store
from .types import ClassificationResult, Mailbox, MessageRef, Outcome

LOGGER = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(
        self,
        store: Store,
        mailbox: Mailbox,
        key: str,
        *,
        dry_run: bool = False,
    ) -> ClassificationResult: ...


@dataclass
class DispatchMetrics:
    """Counters for classification outcomes since startup."""

    processed: int = 0
    good: int = 0
    junk: int = 0
    failed: int = 0

    def record(self, outcome: Outcome) -> None:
        self.processed += 1
        if outcome is Outcome.GOOD:
            self.good += 1
        elif outcome is Outcome.JUNK:
            self.junk += 1
        else:
            self.failed += 1

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "good": self.good,
            "junk": self.junk,
            "failed": self.failed,
        }


class ClassificationDispatcher:
    """Classify each reference against its own mailbox's store.

    A failure is logged with the mailbox and key and reported as
    :attr:`Outcome.FAILED`; it never interrupts the caller. Failed messages are
    not retried since their creation event will not be delivered again.
    """

    def __init__(
        self,
        handles: Mapping[Mailbox, Store],
        classifier: Classifier,
        *,
        dry_run: bool = False,
    ) -> None:
        self._handles = handles
        self._classifier = classifier
        self._dry_run = dry_run
        self._metrics = DispatchMetrics()
        self._metrics_lock = threading.Lock()

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def dispatch(self, ref: MessageRef) -> Outcome:
        outcome = self._classify(ref)
        with self._metrics_lock:
            self._metrics.record(outcome)
        return outcome

    def __call__(self, ref: MessageRef) -> Outcome:
        return self.dispatch(ref)

    def metrics_snapshot(self) -> dict[str, Any]:
        with self._metrics_lock:
            return self._metrics.as_dict()

    def _classify(self, ref: MessageRef) -> Outcome:
        handle = self._handles.get(ref.mailbox)
        if handle is None:
            LOGGER.error("No store open for mailbox %s; cannot classify %s", ref.mailbox, ref.key)
            return Outcome.FAILED
        try:
            result = self._classifier.classify(
                handle,
                ref.mailbox,
                ref.key,
                dry_run=self._dry_run,
            )
        except ClassifyError as exc:
            LOGGER.error("Classify mail %s (mailbox=%s): %s", ref.key, ref.mailbox, exc)
            return Outcome.FAILED
        except Exception:
            LOGGER.exception("Unexpected error classifying %s (mailbox=%s)", ref.key, ref.mailbox)
            return Outcome.FAILED
        return result.outcome


__all__ = ["ClassificationDispatcher", "DispatchMetrics"]
