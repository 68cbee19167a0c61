from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Protocol

import jsonata

"""Expression evaluation boundary.

The pipeline treats the evaluator as an opaque async service:
``await evaluator.evaluate(text, context)`` returns a scalar, list or structure,
or raises ExpressionError. JsonataEvaluator is the default implementation.
"""

__all__ = [
    "ExpressionError",
    "ExpressionEvaluator",
    "JsonataEvaluator",
    "sanitize_expression",
]

# zero-width space/joiners, BOM and the "→" glyph that rich-text paste leaves behind
_PASTE_ARTIFACTS = re.compile("[\u200b-\u200d\ufeff\u2192]")


class ExpressionError(Exception):
    """Raised when an expression cannot be compiled or evaluated."""


class ExpressionEvaluator(Protocol):
    async def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any: ...


def sanitize_expression(src: Any) -> str:
    """Strip paste artifacts and surrounding whitespace from expression text."""
    text = "" if src is None else str(src)
    return _PASTE_ARTIFACTS.sub("", text).strip()


class JsonataEvaluator:
    """JSONata evaluator backed by the jsonata-python library.

    Compiled expressions are cached by text; evaluation itself is synchronous, so
    ``evaluate`` never yields to other tasks while an expression runs.
    """

    def __init__(self) -> None:
        self._compiled: dict[str, Any] = {}

    def _compile(self, expression: str) -> Any:
        compiled = self._compiled.get(expression)
        if compiled is None:
            compiled = jsonata.Jsonata(expression)
            self._compiled[expression] = compiled
        return compiled

    async def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any:
        if not expression:
            raise ExpressionError("empty expression")
        try:
            return self._compile(expression).evaluate(dict(context))
        except Exception as e:  # jsonata raises its own JException plus plain runtime errors
            raise ExpressionError(f"{expression!r}: {e}") from e
