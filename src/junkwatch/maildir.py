"""Helpers for interacting with maildir structures and messages."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path

from .types import Mailbox, MessageRef

LOGGER = logging.getLogger(__name__)

MAILDIR_SUBDIRS = ("cur", "new", "tmp")
INTAKE_DIR = "new"
GOOD_DIR = "cur"
JUNK_FOLDER = ".Junk"
GOOD_LABEL = "good"
JUNK_LABEL = "junk"


class MaildirError(RuntimeError):
    """Raised when maildir operations fail."""


def ensure_mailbox_structure(mailbox: Mailbox) -> None:
    """Ensure the intake, good and junk folders exist."""

    root = mailbox.path
    _ensure_dir(root)
    for base in (root, root / JUNK_FOLDER):
        for subdir in MAILDIR_SUBDIRS:
            _ensure_dir(base / subdir)


def intake_dir(mailbox: Mailbox) -> Path:
    """Return the folder new mail is delivered into."""

    return mailbox.path / INTAKE_DIR


def good_dir(mailbox: Mailbox) -> Path:
    return mailbox.path / GOOD_DIR


def junk_dir(mailbox: Mailbox, subdir: str = "cur") -> Path:
    if subdir not in MAILDIR_SUBDIRS:
        raise MaildirError(f"Unsupported maildir subdirectory: {subdir}")
    return mailbox.path / JUNK_FOLDER / subdir


def split_intake_path(
    path: str | bytes | os.PathLike[str],
    mailboxes: Mapping[str, Mailbox],
) -> MessageRef | None:
    """Map an event path of the form ``<mailbox>/new/<key>`` to a reference.

    ``mailboxes`` maps ``str(mailbox.path)`` to the mailbox. Returns ``None``
    for paths without the intake marker, with an empty or nested key, or for
    mailboxes that are not configured.
    """

    text = os.fsdecode(path)
    marker = f"{os.sep}{INTAKE_DIR}{os.sep}"
    if marker not in text:
        return None
    root, key = text.rsplit(marker, 1)
    if not key or os.sep in key:
        return None
    mailbox = mailboxes.get(root)
    if mailbox is None:
        return None
    return MessageRef(mailbox=mailbox, key=key)


def list_classified(mailboxes: Iterable[Mailbox]) -> dict[Mailbox, list[str]]:
    """Return mailbox-relative keys of every message in a good or junk folder."""

    result: dict[Mailbox, list[str]] = {}
    for mailbox in mailboxes:
        keys: list[str] = []
        for directory in (good_dir(mailbox), junk_dir(mailbox, "new"), junk_dir(mailbox, "cur")):
            try:
                entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
            except OSError as exc:
                raise MaildirError(f"Cannot list {directory}: {exc}") from exc
            relative = directory.relative_to(mailbox.path)
            for entry in entries:
                if entry.name.startswith(".") or not entry.is_file():
                    continue
                keys.append(str(relative / entry.name))
        result[mailbox] = keys
    return result


def label_for_key(key: str) -> str:
    """Return the learning label implied by a mailbox-relative key."""

    parts = Path(key).parts
    if len(parts) == 2 and parts[0] == GOOD_DIR:
        return GOOD_LABEL
    if len(parts) == 3 and parts[0] == JUNK_FOLDER and parts[1] in ("cur", "new"):
        return JUNK_LABEL
    raise MaildirError(f"Message key is not inside a classified folder: {key}")


def message_base_name(filename: str) -> str:
    """Return the stable part of a maildir filename (without the info suffix)."""

    base, _, _ = parse_maildir_info(filename)
    return base


def read_message(path: Path) -> EmailMessage:
    """Parse a message file into an EmailMessage instance."""

    file_path = Path(path)
    if not file_path.is_file():
        raise MaildirError(f"Message file does not exist: {file_path}")
    parser = BytesParser(policy=policy.default)
    try:
        with file_path.open("rb") as handle:
            return parser.parse(handle)
    except OSError as exc:
        raise MaildirError(f"Cannot read message {file_path}: {exc}") from exc
    except Exception as exc:
        raise MaildirError(f"Cannot parse message {file_path}: {exc!r}") from exc


def parse_maildir_info(filename: str) -> tuple[str, str, str]:
    """Return (base, standard_flags, keyword_flags) parsed from filename."""

    if ":2," not in filename:
        return filename, "", ""
    base, flag_section = filename.rsplit(":2,", 1)
    standard_flags = "".join(char for char in flag_section if char.isupper())
    keyword_flags = "".join(char for char in flag_section if char.islower())
    return base, standard_flags, keyword_flags


def _ensure_dir(path: Path) -> None:
    """Create a directory tree and log when it did not already exist."""

    try:
        path.mkdir(parents=True, exist_ok=False)
    except FileExistsError:
        return
    except OSError as exc:
        raise MaildirError(f"Cannot create maildir folder {path}: {exc}") from exc
    LOGGER.info("Created maildir folder %s", path)


__all__ = [
    "GOOD_LABEL",
    "JUNK_LABEL",
    "MAILDIR_SUBDIRS",
    "MaildirError",
    "ensure_mailbox_structure",
    "good_dir",
    "intake_dir",
    "junk_dir",
    "label_for_key",
    "list_classified",
    "message_base_name",
    "parse_maildir_info",
    "read_message",
    "split_intake_path",
]
