from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..models.config_models import SelectMode, SelectSpec
from .names import omit_columns, pick_columns
from .resolver import DynamicResolver, to_name_list
from .scope import scope_applies

"""Select stage (keep/drop).

Runs before any rename so that configured names match the original sheet
headers.
"""

__all__ = [
    "apply_select",
    "build_column_set",
]


async def build_column_set(
    resolver: DynamicResolver,
    entries: Sequence[SelectSpec],
    sheet: str,
    message: Mapping[str, Any] | None,
) -> list[str]:
    """Union the in-scope entries' column names, keeping first-seen order."""
    columns: dict[str, None] = {}
    for entry in entries:
        if not await scope_applies(resolver, entry.scope, sheet, message, None):
            continue
        resolved = await resolver.resolve(entry.column, message, None, sheet=sheet)
        for name in to_name_list(resolved):
            columns.setdefault(name, None)
    return list(columns)


def apply_select(
    rows: Sequence[Mapping[str, Any]],
    mode: SelectMode,
    columns: Sequence[str],
) -> list[dict[str, Any]]:
    """Project or prune every row; an empty column set leaves rows untouched."""
    if mode is SelectMode.NONE or not columns:
        return [dict(r) for r in rows]
    if mode is SelectMode.KEEP:
        return [pick_columns(r, columns) for r in rows]
    return [omit_columns(r, columns) for r in rows]
