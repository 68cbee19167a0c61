from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..logging.error_log import DiagnosticBuffer
from ..models.config_models import TypedValue, ValueKind
from ..models.error_record import INVALID_PATTERN
from .expression import ExpressionError
from .resolver import DynamicResolver, build_context, is_truthy

"""Sheet scoping.

scope_applies() answers "does this rule / list entry apply to the current sheet".
SheetNameFilter applies the pipeline-wide include/exclude patterns. Invalid
patterns never raise: they simply do not match.
"""

__all__ = [
    "SheetNameFilter",
    "safe_regex",
    "scope_applies",
]


def safe_regex(pattern: Any) -> re.Pattern[str] | None:
    """Compile a pattern, returning None when it is empty or invalid."""
    if not pattern:
        return None
    try:
        return re.compile(str(pattern))
    except re.error:
        return None


async def scope_applies(
    resolver: DynamicResolver,
    scope: TypedValue,
    sheet: str,
    message: Mapping[str, Any] | None,
    row: Any = None,
) -> bool:
    """True when ``scope`` matches ``sheet``; a blank scope matches every sheet."""
    if scope.is_blank:
        return True
    if scope.kind is ValueKind.STR:
        return sheet == scope.value
    if scope.kind is ValueKind.REGEX:
        rx = safe_regex(scope.value)
        return rx is not None and rx.search(sheet) is not None
    if scope.kind is ValueKind.JSONATA:
        try:
            ok = await resolver.evaluate(scope.value, build_context(message, row, sheet=sheet))
        except ExpressionError:
            return False
        return is_truthy(ok)
    return True


@dataclass(frozen=True)
class SheetNameFilter:
    """Include/exclude sheet-name patterns.

    An invalid include pattern matches nothing (no sheet is included); an
    invalid exclude pattern matches nothing (no sheet is excluded).
    """
    include: re.Pattern[str] | None = None
    exclude: re.Pattern[str] | None = None
    include_invalid: bool = False

    @classmethod
    def compile(
        cls,
        include: str,
        exclude: str,
        diagnostics: DiagnosticBuffer | None = None,
    ) -> SheetNameFilter:
        inc = safe_regex(include)
        exc = safe_regex(exclude)
        for label, src, compiled in (("include", include, inc), ("exclude", exclude, exc)):
            if src and compiled is None and diagnostics is not None:
                diagnostics.report(INVALID_PATTERN, f"invalid {label} sheet pattern: {src!r}")
        return cls(include=inc, exclude=exc, include_invalid=bool(include) and inc is None)

    def passes(self, name: str) -> bool:
        if self.include_invalid:
            return False
        if self.include is not None and not self.include.search(name):
            return False
        if self.exclude is not None and self.exclude.search(name):
            return False
        return True
