"""Mail moving helpers that respect maildir conventions."""

from __future__ import annotations

import secrets
import socket
import time
from pathlib import Path

from .maildir import MaildirError, good_dir, junk_dir, parse_maildir_info
from .types import Mailbox


class MailMover:
    """Move intake messages into the good or junk folder of a mailbox."""

    def __init__(self, mailbox: Mailbox, *, hostname: str | None = None) -> None:
        self._mailbox = mailbox
        guessed = hostname or socket.gethostname() or "junkwatch"
        self._hostname = guessed.strip() or "junkwatch"

    def move_to_good(self, msg_path: Path) -> Path:
        """Move message into ``cur/`` and return the new path."""

        return self._move(Path(msg_path), good_dir(self._mailbox))

    def move_to_junk(self, msg_path: Path) -> Path:
        """Move message into ``.Junk/cur/`` and return the new path."""

        return self._move(Path(msg_path), junk_dir(self._mailbox, "cur"))

    def _move(self, source: Path, destination_dir: Path) -> Path:
        if not source.exists():
            raise MaildirError(f"Message does not exist: {source}")
        if not source.is_file():
            raise MaildirError(f"Path is not a message file: {source}")

        destination_dir.mkdir(parents=True, exist_ok=True)

        try:
            if source.parent.resolve() == destination_dir.resolve():
                return source
        except FileNotFoundError as exc:
            raise MaildirError(f"Message does not exist: {source}") from exc

        # The base name is the identity the store learns the message under.
        base, standard_flags, keyword_flags = parse_maildir_info(source.name)
        new_name = f"{base}:2,{standard_flags}{keyword_flags}"
        while True:
            candidate = destination_dir / new_name
            if not candidate.exists():
                break
            new_name = f"{self._generate_base_name()}:2,{standard_flags}{keyword_flags}"

        try:
            source.replace(candidate)
        except FileNotFoundError as exc:
            raise MaildirError(f"Message disappeared during move: {source}") from exc
        except PermissionError as exc:  # pragma: no cover - filesystem failure
            raise MaildirError(f"Permission denied moving message: {source}") from exc
        except OSError as exc:  # pragma: no cover - filesystem failure
            raise MaildirError(f"Failed to move message: {exc}") from exc
        return candidate

    def _generate_base_name(self) -> str:
        timestamp = int(time.time() * 1_000_000)
        token = secrets.token_hex(6)
        return f"{timestamp}.{token}.{self._hostname}"


__all__ = ["MailMover"]
