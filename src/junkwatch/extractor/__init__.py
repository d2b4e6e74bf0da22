"""Message text extraction helpers."""

from .text import message_text

__all__ = ["message_text"]
