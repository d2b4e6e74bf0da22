"""Open and close the per-mailbox stores as one unit."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager

from .store import Store, StoreError, StoreOpenError
from .types import Mailbox

LOGGER = logging.getLogger(__name__)

StoreOpener = Callable[[Mailbox], Store]


def open_store(mailbox: Mailbox) -> Store:
    return Store(mailbox.path)


def open_store_read_only(mailbox: Mailbox) -> Store:
    return Store(mailbox.path, read_only=True)


def open_all(
    mailboxes: Iterable[Mailbox],
    *,
    opener: StoreOpener = open_store,
) -> dict[Mailbox, Store]:
    """Open one store per mailbox, or none at all.

    If any store fails to open, every store opened so far is closed again and
    :class:`StoreOpenError` is raised naming the offending mailbox.
    """

    handles: dict[Mailbox, Store] = {}
    for mailbox in mailboxes:
        if mailbox in handles:
            continue
        try:
            handles[mailbox] = opener(mailbox)
        except (StoreError, OSError) as exc:
            close_all(handles)
            raise StoreOpenError(f"Cannot open store for {mailbox}: {exc}") from exc
        LOGGER.debug("Opened store for %s", mailbox)
    return handles


def open_all_read_only(
    mailboxes: Iterable[Mailbox],
    *,
    opener: StoreOpener = open_store_read_only,
) -> dict[Mailbox, Store]:
    """Open every store read-only; fails while a live handle holds any of them."""

    return open_all(mailboxes, opener=opener)


def close_all(handles: Mapping[Mailbox, Store]) -> None:
    """Close every handle, logging (not raising) individual failures."""

    for mailbox, handle in handles.items():
        try:
            handle.close()
        except Exception:
            LOGGER.exception("Failed to close store for %s", mailbox)


@contextmanager
def open_stores(
    mailboxes: Iterable[Mailbox],
    *,
    read_only: bool = False,
    opener: StoreOpener | None = None,
) -> Iterator[dict[Mailbox, Store]]:
    """Context manager yielding open stores and closing all of them on exit."""

    if read_only:
        handles = open_all_read_only(mailboxes, opener=opener or open_store_read_only)
    else:
        handles = open_all(mailboxes, opener=opener or open_store)
    try:
        yield handles
    finally:
        close_all(handles)


__all__ = [
    "close_all",
    "open_all",
    "open_all_read_only",
    "open_store",
    "open_store_read_only",
    "open_stores",
]
