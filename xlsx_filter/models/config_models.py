from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Config dataclasses for the xlsx filter pipeline.

This module defines the domain models for a fully-defaulted pipeline configuration.
They are separate from the loader implementation in xlsx_filter/config/loader.py,
which turns a (possibly partial) JSON document into these objects.

Wire tokens (``"str"``, ``"jsonata"``, ``"=="`` ...) are kept as enum values so a
config document round-trips without a translation table.
"""

__all__ = [
    "ValueKind",
    "ContextScope",
    "Comparator",
    "CONDITION_COMPARATORS",
    "FilterLogic",
    "SelectMode",
    "OutputStructure",
    "TypedValue",
    "RuleSpec",
    "SelectSpec",
    "RenameEntry",
    "ConditionalRename",
    "DeriveEntry",
    "OutputSpec",
    "PipelineConfig",
]


class ValueKind(Enum):
    """How a configured value is turned into a concrete one."""
    STR = "str"
    NUM = "num"
    BOOL = "bool"
    MSG = "msg"
    FLOW = "flow"
    GLOBAL = "global"
    ENV = "env"
    JSONATA = "jsonata"
    REGEX = "regex"

    @classmethod
    def parse(cls, raw: Any, default: ValueKind | None = None) -> ValueKind:
        try:
            return cls(raw)
        except ValueError:
            return default if default is not None else cls.STR


class ContextScope(Enum):
    """Where an input is read from / an output is written to."""
    MSG = "msg"
    FLOW = "flow"
    GLOBAL = "global"

    @classmethod
    def parse(cls, raw: Any) -> ContextScope:
        try:
            return cls(raw)
        except ValueError:
            return cls.MSG


class Comparator(Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    CONTAINS = "contains"
    NOT_CONTAINS = "!contains"
    REGEX = "regex"
    IS_EMPTY = "isEmpty"
    NOT_EMPTY = "!isEmpty"
    EXPRESSION = "jsonata"  # row passes when the RHS expression is truthy

    @classmethod
    def parse(cls, raw: Any) -> Comparator | None:
        """Unknown comparators map to None and never match."""
        try:
            return cls(raw)
        except ValueError:
            return None


# message-level condition (conditional rename) は順序比較と式比較を持たない
CONDITION_COMPARATORS = frozenset({
    Comparator.EQ,
    Comparator.NE,
    Comparator.CONTAINS,
    Comparator.NOT_CONTAINS,
    Comparator.REGEX,
    Comparator.IS_EMPTY,
    Comparator.NOT_EMPTY,
})


class FilterLogic(Enum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, raw: Any) -> FilterLogic:
        # anything that is not exactly "OR" combines with AND
        return cls.OR if raw == "OR" else cls.AND


class SelectMode(Enum):
    NONE = "none"
    KEEP = "keep"
    DROP = "drop"

    @classmethod
    def parse(cls, raw: Any) -> SelectMode:
        try:
            return cls(raw)
        except ValueError:
            return cls.NONE


class OutputStructure(Enum):
    HIERARCHICAL = "hierarchical"
    FLAT = "flat"

    @classmethod
    def parse(cls, raw: Any) -> OutputStructure:
        return cls.HIERARCHICAL if raw == "hierarchical" else cls.FLAT


@dataclass(frozen=True)
class TypedValue:
    """A configured field: raw value plus the kind that says how to resolve it."""
    kind: ValueKind
    value: Any

    @property
    def is_blank(self) -> bool:
        return self.value is None or self.value == ""


@dataclass(frozen=True)
class RuleSpec:
    """Row-level filter rule, optionally scoped to some sheets."""
    scope: TypedValue
    column: TypedValue
    op: Comparator | None
    rhs: TypedValue
    case_sensitive: bool = False
    coerce: bool = True


@dataclass(frozen=True)
class SelectSpec:
    scope: TypedValue
    column: TypedValue


@dataclass(frozen=True)
class RenameEntry:
    scope: TypedValue
    source: TypedValue  # "from" on the wire
    target: TypedValue  # "to" on the wire


@dataclass(frozen=True)
class ConditionalRename:
    """Rename list gated by one message-level condition, evaluated once per batch."""
    enabled: bool = False
    lhs: TypedValue = TypedValue(ValueKind.MSG, "")
    op: Comparator | None = Comparator.EQ
    rhs: TypedValue = TypedValue(ValueKind.STR, "")
    entries: list[RenameEntry] = field(default_factory=list)


@dataclass(frozen=True)
class DeriveEntry:
    column: str
    expression: str
    kind: ValueKind = ValueKind.JSONATA

    @property
    def is_evaluable(self) -> bool:
        return bool(self.column) and self.kind is ValueKind.JSONATA


@dataclass(frozen=True)
class OutputSpec:
    target: ContextScope = ContextScope.MSG
    path: str = "filtered"
    structure: OutputStructure = OutputStructure.HIERARCHICAL
    include_summary: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Root configuration object for one filter node.

    Every field carries its documented default so an empty document yields a
    pass-through pipeline.
    """
    input_path: str = "data"
    input_scope: ContextScope = ContextScope.MSG
    include_sheet_regex: str = ""
    exclude_sheet_regex: str = ""
    filter_logic: FilterLogic = FilterLogic.AND
    rules: list[RuleSpec] = field(default_factory=list)
    select_mode: SelectMode = SelectMode.NONE
    select_list: list[SelectSpec] = field(default_factory=list)
    rename_list: list[RenameEntry] = field(default_factory=list)
    conditional_rename: ConditionalRename = field(default_factory=ConditionalRename)
    derive_list: list[DeriveEntry] = field(default_factory=list)
    output: OutputSpec = field(default_factory=OutputSpec)
