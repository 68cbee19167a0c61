from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..models.config_models import DeriveEntry
from .expression import ExpressionError
from .resolver import DynamicResolver, build_context


async def derive_row(
    resolver: DynamicResolver,
    row: Mapping[str, Any],
    entries: Sequence[DeriveEntry],
    sheet: str,
    message: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Add derived columns to a copy of ``row``.

    Every expression sees the incoming (post-rename) row, not the columns
    derived by earlier entries. A failing entry leaves its column unset.
    """
    out = dict(row)
    for entry in entries:
        if not entry.is_evaluable:
            continue
        try:
            out[entry.column] = await resolver.evaluate(
                entry.expression, build_context(message, row, sheet=sheet)
            )
        except ExpressionError:
            continue
    return out
