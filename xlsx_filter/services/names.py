from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

"""Tolerant column-name matching for select (keep/drop).

Lookups try the exact key first and fall back to a trimmed, lower-cased
comparison. Rule evaluation deliberately does not use these helpers: filters
look up exact keys only.
"""

__all__ = [
    "find_column",
    "normalize_name",
    "omit_columns",
    "pick_columns",
]


def normalize_name(name: Any) -> str:
    return str(name).strip().lower()


def find_column(row: Mapping[str, Any], wanted: Any) -> str | None:
    """Return the row key matching ``wanted``; an exact match always wins."""
    want = str(wanted)
    if want in row:
        return want
    want_n = normalize_name(want)
    for key in row:
        if normalize_name(key) == want_n:
            return key
    return None


def pick_columns(row: Mapping[str, Any], names: Iterable[str]) -> dict[str, Any]:
    """Project ``row`` onto ``names`` (in ``names`` order); unknown names are skipped."""
    out: dict[str, Any] = {}
    for name in names:
        key = find_column(row, name)
        if key:
            out[key] = row[key]
    return out


def omit_columns(row: Mapping[str, Any], names: Iterable[str]) -> dict[str, Any]:
    """Copy ``row`` without the columns matching ``names`` exactly or normalised."""
    wanted = [str(n) for n in names]
    drop_exact = set(wanted)
    drop_norm = {normalize_name(n) for n in wanted}
    return {
        k: v
        for k, v in row.items()
        if k not in drop_exact and normalize_name(k) not in drop_norm
    }
