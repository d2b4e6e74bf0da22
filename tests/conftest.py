from __future__ import annotations

from pathlib import Path

import pytest

from junkwatch.maildir import ensure_mailbox_structure
from junkwatch.types import Mailbox


def write_message(
    path: Path,
    *,
    subject: str = "Hello",
    body: str = "Body",
    sender: str = "sender@example.com",
) -> Path:
    """Write a minimal RFC822 message to ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = (
        f"From: {sender}\n"
        "To: recipient@example.com\n"
        f"Subject: {subject}\n"
        "\n"
        f"{body}\n"
    )
    path.write_text(payload, encoding="utf-8")
    return path


@pytest.fixture
def make_mailbox(tmp_path: Path):
    def _make(name: str = "Maildir") -> Mailbox:
        mailbox = Mailbox(tmp_path / name)
        ensure_mailbox_structure(mailbox)
        return mailbox

    return _make
