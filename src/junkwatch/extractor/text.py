"""Flatten RFC822 messages into the text the classifier tokenises."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parseaddr

from .html import html_to_text


def message_text(message: Message) -> str:
    """Return sender, subject and body text of a parsed message as one string."""

    subject = _decode_header_value(message.get("Subject", ""))
    from_display, from_address = parseaddr(message.get("From", ""))

    plain_bodies: list[str] = []
    html_bodies: list[str] = []
    for part in _iter_body_parts(message):
        payload = part.get_payload(decode=True)
        if payload is None or not isinstance(payload, (bytes, bytearray)):
            continue
        decoded = _decode_bytes(bytes(payload), part.get_content_charset())
        content_type = part.get_content_type().lower()
        if content_type == "text/plain":
            plain_bodies.append(decoded)
        elif content_type == "text/html":
            html_bodies.append(html_to_text(decoded))

    body = _select_body_text(plain_bodies, html_bodies)
    return "\n".join(piece for piece in (from_display, from_address, subject, body) if piece)


def _iter_body_parts(message: Message) -> Iterable[Message]:
    for part in message.walk():
        if part.is_multipart():
            continue
        content_disposition = (part.get_content_disposition() or "").lower()
        if content_disposition == "attachment":
            continue
        yield part


def _decode_bytes(data: bytes, charset: str | None) -> str:
    candidates: Sequence[str] = []
    if charset:
        candidates = [charset]
    candidates = list(candidates) + ["utf-8", "latin-1"]
    for encoding in candidates:
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            continue
    return data.decode("utf-8", errors="ignore")


def _select_body_text(plain_bodies: list[str], html_bodies: list[str]) -> str:
    source = plain_bodies if plain_bodies else html_bodies
    if not source:
        return ""
    combined = "\n".join(chunk.strip() for chunk in source if chunk.strip())
    return combined.strip()


def _decode_header_value(value: str) -> str:
    try:
        decoded = str(make_header(decode_header(value)))
    except Exception:
        decoded = value
    return decoded.strip()


__all__ = ["message_text"]
