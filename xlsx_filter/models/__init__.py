"""Domain models for the xlsx filter pipeline.

This package contains the configuration, result and diagnostic models used
throughout the application.
"""

from .config_models import (
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
from .error_record import DiagnosticRecord
from .processing_result import FileStat, FilterResult, RunSummary

__all__ = [
    # Configuration models
    "Comparator",
    "ConditionalRename",
    "ContextScope",
    "DeriveEntry",
    "FilterLogic",
    "OutputSpec",
    "OutputStructure",
    "PipelineConfig",
    "RenameEntry",
    "RuleSpec",
    "SelectMode",
    "SelectSpec",
    "TypedValue",
    "ValueKind",
    # Processing models
    "DiagnosticRecord",
    "FileStat",
    "FilterResult",
    "RunSummary",
]
