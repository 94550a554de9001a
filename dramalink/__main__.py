"""Module executed when running ``python -m dramalink``."""

from __future__ import annotations

from app.cli import main

if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
