from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config_models import FilterLogic

"""Processing result models for the xlsx filter pipeline.

This module defines the aggregated counters of one batch run and the output
envelope written to the configured target.
"""

__all__ = [
    "FileStat",
    "RunSummary",
    "FilterResult",
]


@dataclass(frozen=True)
class FileStat:
    """Per-file counters (internal helper for FilterResult)."""
    file_name: str
    sheet_count: int
    row_in: int
    row_out: int


@dataclass(frozen=True)
class RunSummary:
    """Aggregated counters for one batch.

    Lock files (``~$``) never reach these counters.
    """
    file_count: int = 0
    sheet_count: int = 0
    row_in: int = 0  # フィルタ前の行数
    row_out: int = 0  # derive 後の行数

    @property
    def filtered_ratio(self) -> float | None:
        if not self.row_in:
            return None
        return self.row_out / self.row_in

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileCount": self.file_count,
            "sheetCount": self.sheet_count,
            "rowIn": self.row_in,
            "rowOut": self.row_out,
            "filteredRatio": self.filtered_ratio,
        }


@dataclass(frozen=True)
class FilterResult:
    """Outcome of one batch: restructured data plus run statistics."""
    data: dict[str, dict[str, list[dict[str, Any]]]] | list[dict[str, Any]]
    summary: RunSummary
    logic: FilterLogic
    rule_count: int
    include_summary: bool = True
    elapsed_seconds: float = 0.0
    file_stats: list[FileStat] = field(default_factory=list)

    def to_output(self) -> dict[str, Any]:
        """Build the object written to the output target."""
        out: dict[str, Any] = {"data": self.data}
        if self.include_summary:
            out["summary"] = self.summary.to_dict()
            out["rules"] = {"logic": self.logic.value, "count": self.rule_count}
        return out
