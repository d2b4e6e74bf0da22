"""Classify arriving mail and learn from already sorted mail."""

from __future__ import annotations

import logging
from pathlib import Path

from sklearn.feature_extraction.text import CountVectorizer

from .config import DEFAULT_JUNK_THRESHOLD
from .extractor import message_text
from .maildir import (
    MaildirError,
    intake_dir,
    label_for_key,
    message_base_name,
    read_message,
)
from .mover import MailMover
from .store import Store, StoreError
from .types import ClassificationResult, Mailbox, Outcome

LOGGER = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 40
TOKEN_PATTERN = r"(?u)\b\w[\w'.@-]*\w\b"

_ANALYZER = CountVectorizer(
    lowercase=True,
    strip_accents="unicode",
    token_pattern=TOKEN_PATTERN,
).build_analyzer()


class ClassifyError(RuntimeError):
    """Raised when a message cannot be classified."""


class LearnError(RuntimeError):
    """Raised when a message cannot be learned."""


def tokenize(text: str) -> frozenset[str]:
    """Return the distinct tokens of ``text``."""

    return frozenset(token for token in _ANALYZER(text) if len(token) <= MAX_TOKEN_LENGTH)


def message_tokens(path: Path) -> frozenset[str]:
    """Return the tokens of a message file, raising :class:`MaildirError` on bad input."""

    message = read_message(path)
    try:
        text = message_text(message)
    except Exception as exc:
        # Malformed headers surface as IndexError or ValueError from the header parser.
        raise MaildirError(f"Cannot extract text from {path}: {exc!r}") from exc
    return tokenize(text)


class MailClassifier:
    """Junk/good decisions backed by a mailbox :class:`Store`."""

    def __init__(
        self,
        *,
        threshold: float = DEFAULT_JUNK_THRESHOLD,
        hostname: str | None = None,
    ) -> None:
        self.threshold = threshold
        self._hostname = hostname

    def classify(
        self,
        store: Store,
        mailbox: Mailbox,
        key: str,
        *,
        dry_run: bool = False,
    ) -> ClassificationResult:
        """Score the intake message ``key`` and move it to good or junk.

        Messages are treated as good until the store has learned both classes.
        With ``dry_run`` the decision is computed and logged but nothing moves.
        """

        path = intake_dir(mailbox) / key
        try:
            probability = store.junk_probability(message_tokens(path))
        except (MaildirError, StoreError) as exc:
            raise ClassifyError(f"Cannot classify {path}: {exc}") from exc

        is_junk = probability is not None and probability >= self.threshold
        outcome = Outcome.JUNK if is_junk else Outcome.GOOD
        if dry_run:
            LOGGER.info(
                "Dry-run: %s would be moved to %s (p_junk=%s)",
                key,
                outcome.value,
                _format_probability(probability),
            )
            return ClassificationResult(outcome=outcome, junk_probability=probability, dry_run=True)

        mover = MailMover(mailbox, hostname=self._hostname)
        try:
            destination = mover.move_to_junk(path) if is_junk else mover.move_to_good(path)
        except MaildirError as exc:
            raise ClassifyError(f"Cannot move {path}: {exc}") from exc
        LOGGER.info(
            "Classified %s as %s (p_junk=%s, mailbox=%s)",
            key,
            outcome.value,
            _format_probability(probability),
            mailbox,
        )
        return ClassificationResult(
            outcome=outcome,
            junk_probability=probability,
            destination=destination,
        )

    def learn(self, store: Store, mailbox: Mailbox, key: str) -> bool:
        """Learn a message from a good or junk folder.

        Returns True when the store changed, False when the message had already
        been learned with the same label.
        """

        try:
            label = label_for_key(key)
            path = mailbox.path / key
            message_id = message_base_name(path.name)
            tokens = message_tokens(path)
            previous = store.learned_label(message_id)
            changed = store.train(message_id, tokens, label)
        except (MaildirError, StoreError) as exc:
            raise LearnError(f"Cannot learn {key}: {exc}") from exc
        if changed and previous is not None:
            LOGGER.info(
                "Relearned %s as %s (was %s, mailbox=%s)",
                message_id,
                label,
                previous,
                mailbox,
            )
        return changed

    def score(self, store: Store, path: Path) -> float | None:
        """Return the junk probability of an arbitrary message file."""

        try:
            return store.junk_probability(message_tokens(Path(path)))
        except (MaildirError, StoreError) as exc:
            raise ClassifyError(f"Cannot score {path}: {exc}") from exc


def _format_probability(probability: float | None) -> str:
    return "n/a" if probability is None else f"{probability:.3f}"


__all__ = [
    "ClassifyError",
    "LearnError",
    "MailClassifier",
    "message_tokens",
    "tokenize",
]
