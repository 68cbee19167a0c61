from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from ..models.config_models import Comparator, FilterLogic, RuleSpec
from .expression import ExpressionError
from .resolver import DynamicResolver, build_context, is_truthy, stringify, to_name_list
from .scope import scope_applies

"""Row filter rules.

Operator behaviour:
  == / !=            loose equality after optional coercion / lower-casing
  < <= > >=          both sides numified (empty -> 0); non-numeric operands never match
  contains / !contains
                     strings only; otherwise contains is False, !contains True
  regex              RHS pattern searched in the stringified cell; invalid -> False
  isEmpty / !isEmpty None or whitespace-only string
  jsonata            RHS expression evaluated per row; truthy passes ([] and {} count as truthy)

A rule whose column reference resolves to several names passes when ANY of
the present columns satisfies the comparator. Column lookup is exact.

AND / OR:
  AND                stops at the first failing rule
  OR                 stops at the first passing rule
  []                 every row passes
"""

__all__ = [
    "coerce_value",
    "compare",
    "evaluate_rule",
    "is_empty",
    "loose_equals",
    "row_passes",
    "to_number",
]

# numeric literal as accepted by a spreadsheet/JS host (no "nan", no "1_000")
_NUMERIC_RE = re.compile(
    r"^[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|Infinity)$|^0[xX][0-9a-fA-F]+$"
)

_ORDERING = {
    Comparator.LT: lambda a, b: a < b,
    Comparator.LTE: lambda a, b: a <= b,
    Comparator.GT: lambda a, b: a > b,
    Comparator.GTE: lambda a, b: a >= b,
}


def _parse_numeric_text(text: str) -> float | int | None:
    if not _NUMERIC_RE.match(text):
        return None
    if text.lower().startswith(("0x",)):
        return int(text, 16)
    if text.lstrip("+-") == "Infinity":
        return -math.inf if text.startswith("-") else math.inf
    value = float(text)
    return int(value) if value.is_integer() and "." not in text and "e" not in text.lower() else value


def coerce_value(value: Any) -> Any:
    """'true'/'false' -> bool, numeric strings -> number, anything else unchanged."""
    if isinstance(value, str):
        text = value.strip()
        if text == "true":
            return True
        if text == "false":
            return False
        if text:
            number = _parse_numeric_text(text)
            if number is not None:
                return number
    return value


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def to_number(value: Any) -> float:
    """Numify for ordering comparisons.

    Empty strings and None read as 0; anything without a numeric reading is NaN.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        number = _parse_numeric_text(text)
        return float(number) if number is not None else math.nan
    # None (empty cell) は 0 として比較する
    if value is None:
        return 0.0
    return math.nan


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that lets numbers, numeric strings and booleans meet."""
    if left is None or right is None:
        return left is None and right is None
    if type(left) is type(right):
        return left == right
    if _is_number(left) and _is_number(right):
        return left == right
    scalar = (str, int, float, bool)
    if isinstance(left, scalar) and isinstance(right, scalar):
        if isinstance(left, str) and isinstance(right, str):
            return left == right
        return to_number(left) == to_number(right)
    return left == right


def compare(
    op: Comparator | None,
    left: Any,
    right: Any,
    *,
    coerce: bool = True,
    case_sensitive: bool = False,
) -> bool:
    """Apply one comparator between a cell value and a resolved RHS."""
    lc = coerce_value(left) if coerce else left
    rc = coerce_value(right) if coerce else right
    ls = lc.lower() if isinstance(lc, str) and not case_sensitive else lc
    rs = rc.lower() if isinstance(rc, str) and not case_sensitive else rc

    if op is Comparator.EQ:
        return loose_equals(ls, rs)
    if op is Comparator.NE:
        return not loose_equals(ls, rs)
    if op in _ORDERING:
        return _ORDERING[op](to_number(lc), to_number(rc))
    if op is Comparator.CONTAINS:
        if not isinstance(ls, str) or not isinstance(rs, str):
            return False
        return rs in ls
    if op is Comparator.NOT_CONTAINS:
        if not isinstance(ls, str) or not isinstance(rs, str):
            return True
        return rs not in ls
    if op is Comparator.REGEX:
        # "" is a valid pattern here and matches everything
        try:
            rx = re.compile(stringify(rc))
        except re.error:
            return False
        return rx.search(stringify(lc)) is not None
    if op is Comparator.IS_EMPTY:
        return is_empty(lc)
    if op is Comparator.NOT_EMPTY:
        return not is_empty(lc)
    return False


async def evaluate_rule(
    resolver: DynamicResolver,
    rule: RuleSpec,
    row: Mapping[str, Any],
    sheet: str,
    message: Mapping[str, Any] | None,
) -> bool:
    """Evaluate one rule against one row."""
    if not await scope_applies(resolver, rule.scope, sheet, message, row):
        return True  # out of scope: does not constrain this sheet

    if rule.op is Comparator.EXPRESSION:
        try:
            ok = await resolver.evaluate(rule.rhs.value, build_context(message, row, sheet=sheet))
        except ExpressionError:
            return False
        return is_truthy(ok)

    names = to_name_list(await resolver.resolve(rule.column, message, row, sheet=sheet))
    if not names:
        return False

    rhs = await resolver.resolve(rule.rhs, message, row, sheet=sheet)
    for name in names:
        if name not in row:
            continue
        if compare(rule.op, row[name], rhs, coerce=rule.coerce, case_sensitive=rule.case_sensitive):
            return True
    return False


async def row_passes(
    resolver: DynamicResolver,
    rules: Sequence[RuleSpec],
    logic: FilterLogic,
    row: Mapping[str, Any],
    sheet: str,
    message: Mapping[str, Any] | None,
) -> bool:
    """Combine the rule list for one row, short-circuiting in list order."""
    if not rules:
        return True
    if logic is FilterLogic.OR:
        for rule in rules:
            if await evaluate_rule(resolver, rule, row, sheet, message):
                return True
        return False
    for rule in rules:
        if not await evaluate_rule(resolver, rule, row, sheet, message):
            return False
    return True
