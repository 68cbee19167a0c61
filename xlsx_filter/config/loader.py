from __future__ import annotations

import copy
import json
import logging
import os
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    Comparator,
    ConditionalRename,
    ContextScope,
    DeriveEntry,
    FilterLogic,
    OutputSpec,
    OutputStructure,
    PipelineConfig,
    RenameEntry,
    RuleSpec,
    SelectMode,
    SelectSpec,
    TypedValue,
    ValueKind,
)

"""Config file persistence and defaulting.

Responsibilities:
- Resolve config paths under a root directory (no traversal, ``.json`` only)
- Load / save / template the ``{version, updatedAt, schema}`` document
- Validate the document envelope (jsonschema); field-level problems inside
  ``schema`` are logged and defaulted, never fatal
- Build a fully-defaulted PipelineConfig
- ConfigSource: lock-to-file provider with mtime based reload
"""

__all__ = [
    "ConfigError",
    "ConfigSource",
    "DOCUMENT_SCHEMA",
    "PIPELINE_SCHEMA",
    "build_pipeline_config",
    "create_template",
    "load_config_document",
    "load_pipeline_config",
    "make_template",
    "resolve_safe_path",
    "save_config_document",
    "schema_warnings",
    "with_defaults",
]

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1

_TYPED = {"type": ["string", "number", "boolean", "array", "null"]}

# envelope: violations here fail the load
DOCUMENT_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "version": {"type": ["integer", "string"]},
        "updatedAt": {"type": "string"},
        "schema": {"type": "object"},
    },
}

_SCOPED = {
    "sheetScope": _TYPED,
    "sheetScopeType": {"enum": ["str", "regex", "jsonata"]},
}

# field level: violations are reported as warnings and the field is defaulted
PIPELINE_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "inputPath": {"type": "string"},
        "inputPathType": {"enum": ["msg", "flow", "global"]},
        "includeSheetRegex": {"type": "string"},
        "excludeSheetRegex": {"type": "string"},
        "filterLogic": {"enum": ["AND", "OR"]},
        "rules": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    **_SCOPED,
                    "col": _TYPED,
                    "op": {"enum": [c.value for c in Comparator]},
                    "rhs": _TYPED,
                    "caseSensitive": {"type": "boolean"},
                    "coerce": {"type": "boolean"},
                },
            },
        },
        "selectMode": {"enum": ["none", "keep", "drop"]},
        "selectList": {"type": "array", "items": {"type": "object", "properties": {**_SCOPED, "col": _TYPED}}},
        "renameList": {"type": "array", "items": {"type": "object", "properties": _SCOPED}},
        "conditionalRename": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "op": {"enum": ["==", "!=", "contains", "!contains", "regex", "isEmpty", "!isEmpty"]},
                "list": {"type": "array", "items": {"type": "object"}},
            },
        },
        "deriveList": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"col": {"type": "string"}, "expr": {"type": "string"}},
            },
        },
        "output": {
            "type": "object",
            "properties": {
                "targetType": {"enum": ["msg", "flow", "global"]},
                "targetPath": {"type": "string"},
                "structure": {"enum": ["hierarchical", "flat"]},
                "includeSummary": {"type": "boolean"},
            },
        },
    },
}


class ConfigError(Exception):
    pass


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def resolve_safe_path(raw_path: Any, root: Path | str | None = None) -> Path:
    """Resolve a config path under ``root`` (default: cwd).

    Raises:
        ConfigError: when the path is empty, escapes ``root`` or is not ``.json``
    """
    if not raw_path or not isinstance(raw_path, (str, os.PathLike)):
        raise ConfigError("Invalid config file path.")
    base = Path(root if root is not None else os.getcwd()).resolve()
    candidate = Path(raw_path)
    abs_path = (candidate if candidate.is_absolute() else base / candidate).resolve()
    if not abs_path.is_relative_to(base):
        raise ConfigError("Path is outside the config root.")
    if abs_path.suffix.lower() != ".json":
        raise ConfigError("Config file must have .json extension.")
    return abs_path


def _list(value: Any) -> list[Any]:
    return copy.deepcopy(value) if isinstance(value, list) else []


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _pick(src: Mapping[str, Any], key: str, default: Any) -> Any:
    value = src.get(key)
    return default if value is None else value


def with_defaults(schema: Any = None) -> dict[str, Any]:
    """Return a complete schema dict, substituting defaults for missing fields."""
    s = _dict(schema)
    cr = _dict(s.get("conditionalRename"))
    out = _dict(s.get("output"))
    return {
        "inputPath": _pick(s, "inputPath", "data"),
        "inputPathType": _pick(s, "inputPathType", "msg"),
        "includeSheetRegex": _pick(s, "includeSheetRegex", ""),
        "excludeSheetRegex": _pick(s, "excludeSheetRegex", ""),
        "filterLogic": _pick(s, "filterLogic", "AND"),
        "rules": _list(s.get("rules")),
        "selectMode": _pick(s, "selectMode", "none"),
        "selectList": _list(s.get("selectList")),
        "renameList": _list(s.get("renameList")),
        "conditionalRename": {
            "enabled": _pick(cr, "enabled", False),
            "whenLhsType": _pick(cr, "whenLhsType", "msg"),
            "whenLhs": _pick(cr, "whenLhs", ""),
            "op": _pick(cr, "op", "=="),
            "rhsType": _pick(cr, "rhsType", "str"),
            "rhs": _pick(cr, "rhs", ""),
            "list": _list(cr.get("list")),
        },
        "deriveList": _list(s.get("deriveList")),
        "output": {
            "targetType": _pick(out, "targetType", "msg"),
            "targetPath": _pick(out, "targetPath", "filtered"),
            "structure": _pick(out, "structure", "hierarchical"),
            "includeSummary": _pick(out, "includeSummary", True),
        },
    }


def schema_warnings(schema: Any) -> list[str]:
    """List field-level problems in a pipeline schema (never raises)."""
    validator = jsonschema.Draft7Validator(PIPELINE_SCHEMA)
    messages = []
    errors = validator.iter_errors(schema if schema is not None else {})
    for err in sorted(errors, key=lambda e: [str(p) for p in e.path]):
        where = ".".join(str(p) for p in err.path) or "<root>"
        messages.append(f"{where}: {err.message}")
    return messages


def _typed(value: Any, kind: Any, default_kind: ValueKind = ValueKind.STR) -> TypedValue:
    return TypedValue(ValueKind.parse(kind, default_kind), value)


def _scope(item: Mapping[str, Any]) -> TypedValue:
    return _typed(item.get("sheetScope"), item.get("sheetScopeType"))


def _entries(raw: list[Any], label: str) -> list[Mapping[str, Any]]:
    items = []
    for idx, item in enumerate(raw):
        if isinstance(item, Mapping):
            items.append(item)
        else:
            logger.warning("config %s[%d] is not an object; ignored", label, idx)
    return items


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _rename_entries(raw: list[Any], label: str) -> list[RenameEntry]:
    return [
        RenameEntry(
            scope=_scope(it),
            source=_typed(it.get("from"), it.get("fromType")),
            target=_typed(it.get("to"), it.get("toType")),
        )
        for it in _entries(raw, label)
    ]


def build_pipeline_config(schema: Any = None) -> PipelineConfig:
    """Build a fully-defaulted PipelineConfig from a (possibly partial) schema dict."""
    for problem in schema_warnings(schema):
        logger.warning("config field defaulted or ignored: %s", problem)
    s = with_defaults(schema)

    rules = [
        RuleSpec(
            scope=_scope(it),
            column=_typed(it.get("col"), it.get("colType")),
            op=Comparator.parse(it.get("op")),
            rhs=_typed(it.get("rhs"), it.get("rhsType")),
            case_sensitive=bool(it.get("caseSensitive")),
            coerce=it.get("coerce") is not False,
        )
        for it in _entries(s["rules"], "rules")
    ]
    select_list = [
        SelectSpec(scope=_scope(it), column=_typed(it.get("col"), it.get("colType")))
        for it in _entries(s["selectList"], "selectList")
    ]
    derive_list = [
        DeriveEntry(
            column=_str(it.get("col")),
            expression=_str(it.get("expr")),
            kind=ValueKind.parse(it.get("exprType"), ValueKind.JSONATA),
        )
        for it in _entries(s["deriveList"], "deriveList")
    ]
    cr = s["conditionalRename"]
    out = s["output"]
    return PipelineConfig(
        input_path=_str(s["inputPath"]) or "data",
        input_scope=ContextScope.parse(s["inputPathType"]),
        include_sheet_regex=_str(s["includeSheetRegex"]),
        exclude_sheet_regex=_str(s["excludeSheetRegex"]),
        filter_logic=FilterLogic.parse(s["filterLogic"]),
        rules=rules,
        select_mode=SelectMode.parse(s["selectMode"]),
        select_list=select_list,
        rename_list=_rename_entries(s["renameList"], "renameList"),
        conditional_rename=ConditionalRename(
            enabled=cr["enabled"] is True,
            lhs=_typed(cr["whenLhs"], cr["whenLhsType"], ValueKind.MSG),
            op=Comparator.parse(cr["op"]),
            rhs=_typed(cr["rhs"], cr["rhsType"]),
            entries=_rename_entries(cr["list"], "conditionalRename.list"),
        ),
        derive_list=derive_list,
        output=OutputSpec(
            target=ContextScope.parse(out["targetType"]),
            path=_str(out["targetPath"]),
            structure=OutputStructure.parse(out["structure"]),
            include_summary=out["includeSummary"] is not False,
        ),
    )


def load_config_document(path: Path) -> dict[str, Any]:
    """Read and envelope-validate a ``{version, updatedAt, schema}`` document.

    Raises:
        ConfigError: missing file, invalid JSON or an envelope violation
    """
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        raise ConfigError(f"cannot read config file: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid json: {e}") from e
    try:
        jsonschema.validate(data, DOCUMENT_SCHEMA)
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e
    return data


def load_pipeline_config(raw_path: Any, root: Path | str | None = None) -> PipelineConfig:
    path = resolve_safe_path(raw_path, root)
    document = load_config_document(path)
    return build_pipeline_config(document.get("schema"))


def save_config_document(raw_path: Any, data: Any, root: Path | str | None = None) -> Path:
    """Write a config document as pretty JSON, stamping ``updatedAt`` if absent."""
    path = resolve_safe_path(raw_path, root)
    if not isinstance(data, dict):
        raise ConfigError("Missing or invalid data.")
    to_write = copy.deepcopy(data)
    if not to_write.get("updatedAt"):
        to_write["updatedAt"] = _now_iso()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_write, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def make_template() -> dict[str, Any]:
    return {"version": CONFIG_VERSION, "updatedAt": _now_iso(), "schema": with_defaults({})}


def create_template(raw_path: Any, root: Path | str | None = None) -> tuple[Path, dict[str, Any]]:
    """Create a default config document; refuses to overwrite an existing file."""
    path = resolve_safe_path(raw_path, root)
    if path.exists():
        raise ConfigError(f"File already exists: {path}")
    template = make_template()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(template, indent=2, ensure_ascii=False), encoding="utf-8")
    return path, template


class ConfigSource:
    """Config provider called by the pipeline at the start of every batch.

    Without a path it always returns the embedded config. With a path the file
    wins; if the file cannot be loaded the embedded config is used. When
    ``watch`` is on, a changed mtime triggers a reload once the file has been
    quiet for ``debounce_seconds``; a failed reload keeps the previous config.
    """

    def __init__(
        self,
        path: Any = None,
        *,
        root: Path | str | None = None,
        embedded: Mapping[str, Any] | None = None,
        watch: bool = False,
        debounce_seconds: float = 0.25,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = resolve_safe_path(path, root) if path else None
        self.embedded = build_pipeline_config(embedded or {})
        self.watch = watch
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._config: PipelineConfig | None = None
        self._loaded_mtime: float | None = None
        self.from_file = False

    def _load(self, path: Path) -> PipelineConfig:
        mtime = path.stat().st_mtime if path.exists() else None
        config = build_pipeline_config(load_config_document(path).get("schema"))
        self._loaded_mtime = mtime
        return config

    def __call__(self) -> PipelineConfig:
        if self.path is None:
            return self.embedded
        if self._config is None:
            try:
                self._config = self._load(self.path)
                self.from_file = True
                logger.info("config loaded: %s", self.path)
            except ConfigError as e:
                logger.warning("config load failed (%s); using embedded config", e)
                self._config = self.embedded
                self.from_file = False
        elif self.watch:
            self._maybe_reload(self.path)
        return self._config

    def _maybe_reload(self, path: Path) -> None:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return
        if mtime == self._loaded_mtime:
            return
        if self._clock() - mtime < self.debounce_seconds:
            return  # still being written
        try:
            self._config = self._load(path)
            self.from_file = True
            logger.info("config reloaded: %s", path)
        except ConfigError as e:
            self._loaded_mtime = mtime
            logger.warning("config reload failed (%s); keeping previous config", e)
