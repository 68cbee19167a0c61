from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from ..logging.error_log import DiagnosticBuffer
from ..models.config_models import ContextScope, TypedValue, ValueKind
from ..models.error_record import EXPRESSION_ERROR
from .context_store import ContextStore, deep_get
from .expression import ExpressionError, ExpressionEvaluator, sanitize_expression

"""Dynamic value resolution.

A configured field is a TypedValue; resolve() turns it into a concrete value:

    str / regex  -> the literal itself
    num / bool   -> the literal parsed to a number / boolean
    msg          -> dotted path inside the batch message
    flow/global  -> ContextStore lookup
    env          -> environment variable
    jsonata      -> expression evaluated against {message..., row, sheet}

Only the expression kind awaits. A failing expression resolves to None and is
reported to the diagnostic buffer; resolve() never raises.
"""

__all__ = [
    "DynamicResolver",
    "build_context",
    "ensure_list",
    "is_truthy",
    "parse_bool",
    "parse_number",
    "stringify",
    "to_name_list",
]

logger = logging.getLogger(__name__)


def ensure_list(value: Any) -> list[Any]:
    """None -> [], list/tuple -> list, anything else -> [value]."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def stringify(value: Any) -> str:
    """Render a value the way it reads in a spreadsheet/JSON document."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return "null"
    return str(value)


def is_truthy(value: Any) -> bool:
    """Truthiness of an expression result as JSON hosts read it.

    Empty lists and objects are truthy; None, False, 0, NaN and "" are not.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return value == value and value != 0
    if isinstance(value, str):
        return value != ""
    return True


def to_name_list(value: Any) -> list[str]:
    """Normalise a resolved column reference to a list of non-empty names."""
    names = [stringify(v) for v in ensure_list(value) if v is not None]
    return [n for n in names if n]


def parse_number(raw: Any) -> Any:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        return raw
    if isinstance(raw, (int, float)):
        return raw
    text = raw.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return raw  # 数値化できなければ元の文字列のまま


def parse_bool(raw: Any) -> Any:
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return bool(raw)


def build_context(message: Mapping[str, Any] | None, row: Any = None, **extras: Any) -> dict[str, Any]:
    """Expression context: the message's top-level keys plus ``row`` and extras."""
    context: dict[str, Any] = dict(message or {})
    context["row"] = row
    context.update(extras)
    return context


class DynamicResolver:
    """Resolve TypedValues for one batch.

    Args:
        evaluator: expression service used for the ``jsonata`` kind
        store: flow/global context store
        diagnostics: buffer receiving expression failures (optional)
        environ: environment mapping, defaults to os.environ
    """

    def __init__(
        self,
        evaluator: ExpressionEvaluator,
        store: ContextStore,
        diagnostics: DiagnosticBuffer | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.store = store
        self.diagnostics = diagnostics
        self.environ = os.environ if environ is None else environ
        self._file = ""

    def bind_file(self, file_name: str) -> None:
        """Set the workbook name attached to diagnostics from now on."""
        self._file = file_name

    async def evaluate(self, expression: Any, context: Mapping[str, Any]) -> Any:
        """Evaluate sanitised expression text.

        Raises:
            ExpressionError: after the failure has been reported
        """
        text = sanitize_expression(expression)
        try:
            return await self.evaluator.evaluate(text, context)
        except ExpressionError as e:
            sheet = context.get("sheet")
            if self.diagnostics is not None:
                self.diagnostics.report(
                    EXPRESSION_ERROR,
                    str(e),
                    file=self._file,
                    sheet=sheet if isinstance(sheet, str) else "",
                )
            else:
                logger.warning("expression failed: %s", e)
            raise

    async def resolve(
        self,
        value: TypedValue,
        message: Mapping[str, Any] | None,
        row: Any = None,
        **extras: Any,
    ) -> Any:
        kind, raw = value.kind, value.value
        if kind is ValueKind.NUM:
            return parse_number(raw)
        if kind is ValueKind.BOOL:
            return parse_bool(raw)
        if kind is ValueKind.MSG:
            return deep_get(message, raw)
        if kind is ValueKind.FLOW:
            return self.store.get(ContextScope.FLOW, raw)
        if kind is ValueKind.GLOBAL:
            return self.store.get(ContextScope.GLOBAL, raw)
        if kind is ValueKind.ENV:
            return self.environ.get(str(raw)) if raw else None
        if kind is ValueKind.JSONATA:
            try:
                return await self.evaluate(raw, build_context(message, row, **extras))
            except ExpressionError:
                return None
        # str / regex and anything unrecognised are literals
        return raw
