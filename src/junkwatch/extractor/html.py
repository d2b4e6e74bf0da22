"""Helpers for flattening HTML email parts."""

from __future__ import annotations

from bs4 import BeautifulSoup


def html_to_text(html: str) -> str:
    """Return the visible text of an HTML fragment, including link targets."""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style"]):
        tag.decompose()

    pieces = [soup.get_text(" ", strip=True)]
    for tag in soup.find_all(["a", "area"]):
        href = tag.get("href")
        if isinstance(href, str) and href.strip():
            pieces.append(href.strip())
    return " ".join(piece for piece in pieces if piece)


__all__ = ["html_to_text"]
