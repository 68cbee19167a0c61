# Shared pytest fixtures
from __future__ import annotations
import json
import logging
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from xlsx_filter.logging.error_log import DiagnosticBuffer
from xlsx_filter.logging.init import LOGGER_NAME, reset_logging
from xlsx_filter.services.context_store import InMemoryContextStore
from xlsx_filter.services.expression import ExpressionError
from xlsx_filter.services.resolver import DynamicResolver


class ScriptedEvaluator:
    """Stand-in expression service.

    ``scripts`` maps expression text to a value or to ``fn(context)``. Unknown
    expressions, and scripts returning an Exception, raise ExpressionError.
    Every call is recorded in ``calls`` as ``(expression, context)``.
    """

    def __init__(self, scripts: Mapping[str, Any] | None = None) -> None:
        self.scripts: dict[str, Any] = dict(scripts or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def expressions(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any:
        self.calls.append((expression, dict(context)))
        if expression not in self.scripts:
            raise ExpressionError(f"unknown expression {expression!r}")
        script = self.scripts[expression]
        value = script(context) if callable(script) else script
        if isinstance(value, Exception):
            raise ExpressionError(str(value))
        return value


@pytest.fixture(autouse=True)
def _isolate_package_logger():
    # setup_logging() binds the handler to the stderr of the test that called it
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def evaluator() -> ScriptedEvaluator:
    return ScriptedEvaluator()


@pytest.fixture()
def store() -> InMemoryContextStore:
    return InMemoryContextStore()


@pytest.fixture()
def diagnostics(tmp_path: Path) -> DiagnosticBuffer:
    return DiagnosticBuffer(logs_dir=tmp_path / "logs")


@pytest.fixture()
def resolver(evaluator: ScriptedEvaluator, store: InMemoryContextStore, diagnostics: DiagnosticBuffer) -> DynamicResolver:
    return DynamicResolver(evaluator, store, diagnostics, environ={"REGION": "EU"})


@pytest.fixture()
def sample_schema() -> dict[str, Any]:
    return {
        "inputPath": "data",
        "inputPathType": "msg",
        "filterLogic": "AND",
        "rules": [
            {"col": "Amount", "colType": "str", "op": ">=", "rhs": "8", "rhsType": "str"},
        ],
        "selectMode": "drop",
        "selectList": [{"col": "Internal", "colType": "str"}],
        "renameList": [{"from": "Amount", "fromType": "str", "to": "amount", "toType": "str"}],
        "output": {"targetType": "msg", "targetPath": "filtered", "structure": "hierarchical"},
    }


@pytest.fixture()
def write_config(temp_workdir: Path, sample_schema: dict[str, Any]) -> Path:
    cfg = temp_workdir / "config" / "filter.json"
    document = {"version": 1, "updatedAt": "2026-01-01T00:00:00Z", "schema": sample_schema}
    cfg.write_text(json.dumps(document, indent=2), encoding="utf-8")
    return cfg


@pytest.fixture()
def make_rows() -> Callable[..., list[dict[str, Any]]]:
    def _make(*amounts: Any, column: str = "Amount") -> list[dict[str, Any]]:
        return [{"Name": f"r{i}", column: a} for i, a in enumerate(amounts)]
    return _make
