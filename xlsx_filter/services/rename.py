from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..models.config_models import CONDITION_COMPARATORS, ConditionalRename, RenameEntry
from .resolver import DynamicResolver, to_name_list
from .rules import compare
from .scope import scope_applies

"""Rename engine (static and conditional).

Each entry resolves ``from`` and ``to`` to name lists and maps them pairwise:
index i walks max(len(from), len(to)) positions and each side is clamped to its
last element, so one target can absorb several sources and vice versa.
Entries apply in list order against the row produced by the previous entry.
When the target already exists it is overwritten (last write wins).
"""

__all__ = [
    "condition_true",
    "rename_row",
]

logger = logging.getLogger(__name__)


async def rename_row(
    resolver: DynamicResolver,
    row: Mapping[str, Any],
    entries: Sequence[RenameEntry],
    sheet: str,
    message: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Return a renamed copy of ``row``.

    Scopes and expressions see the incoming row; key presence is checked
    against the progressively renamed copy.
    """
    out = dict(row)
    for entry in entries:
        if not await scope_applies(resolver, entry.scope, sheet, message, row):
            continue
        sources = to_name_list(await resolver.resolve(entry.source, message, row, sheet=sheet))
        targets = to_name_list(await resolver.resolve(entry.target, message, row, sheet=sheet))
        if not sources or not targets:
            continue
        for i in range(max(len(sources), len(targets))):
            src = sources[min(i, len(sources) - 1)]
            dst = targets[min(i, len(targets) - 1)]
            if src == dst or src not in out:
                continue
            out[dst] = out.pop(src)
    return out


async def condition_true(
    resolver: DynamicResolver,
    condition: ConditionalRename,
    message: Mapping[str, Any] | None,
) -> bool:
    """Evaluate the message-level gate of the conditional rename.

    Both sides are resolved without row or sheet context and always coerced.
    """
    if condition.op not in CONDITION_COMPARATORS:
        logger.debug("conditional rename comparator %s is not supported", condition.op)
        return False
    lhs = await resolver.resolve(condition.lhs, message)
    rhs = await resolver.resolve(condition.rhs, message)
    return compare(condition.op, lhs, rhs, coerce=True, case_sensitive=True)
