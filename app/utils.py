"""Utility helpers for the DramaLink service."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any


# Letters, digits and anything outside the ASCII range survive normalisation.
_NON_TITLE_CHARS_RE = re.compile(r"[^a-z0-9\u0080-\U0010ffff]")
_LEADING_SYMBOLS_RE = re.compile(r"^[^a-zA-Z0-9\u0080-\U0010ffff]+")
_RANK_RE = re.compile(r"^\s*#?\s*(\d+)")
_LEADING_FLOAT_RE = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)")
_YEAR_RE = re.compile(r"(19|20|21)\d{2}")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (database convention)."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_title(value: str) -> str:
    """Return a comparison key for a title.

    Lowercases the value and drops every character that is not an ASCII letter,
    a digit or a non-Latin code point. Only meant for equality and substring
    checks, never for display or search queries.
    """

    return _NON_TITLE_CHARS_RE.sub("", (value or "").lower())


def sanitize_for_search(value: str) -> str:
    """Strip leading symbols that break the Kuryana search (``#Alive`` -> ``Alive``)."""

    return _LEADING_SYMBOLS_RE.sub("", value or "").strip()


def parse_rating(value: Any) -> float | None:
    """Best-effort float parse; ``None`` for anything unusable (including zero)."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        rating = float(value)
    else:
        match = _LEADING_FLOAT_RE.match(str(value))
        if not match:
            return None
        rating = float(match.group(1))
    if rating != rating or rating == 0:  # NaN or unrated
        return None
    return rating


def parse_rank(value: Any) -> int | None:
    """Extract the integer from a ``"#123"`` style ranking string."""

    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return None
    match = _RANK_RE.match(value.replace(",", ""))
    if not match:
        return None
    return int(match.group(1))


def parse_year(value: Any) -> int | None:
    """Return a plausible four digit year from an int or a date-like string."""

    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not value:
        return None
    match = _YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))
