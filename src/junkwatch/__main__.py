"""Allow running junkwatch via ``python -m junkwatch``."""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":  # pragma: no cover - module execution guard
    main()
