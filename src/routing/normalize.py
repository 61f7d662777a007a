"""String normalization shared by visibility checks, PIC resolution and search.

Every case-insensitive comparison in the portal goes through these helpers.
"""

from __future__ import annotations

from collections.abc import Iterable


def normalize_token(value: object) -> str:
    """Trim, collapse inner whitespace and case-fold. None becomes ""."""
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


def normalize_department(value: object, fallback: str) -> str:
    """Upper-case department name, or `fallback` when blank or missing."""
    token = normalize_token(value)
    if not token:
        return fallback.strip().upper()
    return token.upper()


def normalize_selection(values: Iterable[object]) -> frozenset[str]:
    """Normalize a selection of service types, dropping blanks."""
    return frozenset(t for t in (normalize_token(v) for v in values) if t)


def contains_text(haystack: Iterable[object], needle: str) -> bool:
    """Case-insensitive substring search over the joined haystack parts."""
    query = normalize_token(needle)
    if not query:
        return True
    joined = " ".join(normalize_token(part) for part in haystack if part is not None)
    return query in joined
