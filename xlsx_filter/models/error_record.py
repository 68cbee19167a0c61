from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""DiagnosticRecord model for the diagnostic channel.

Recoverable problems (a failing expression, an invalid pattern) never change the
pipeline output; they are recorded here instead. ``row=-1`` is the sentinel for
records that are not tied to a single row (sheet- or batch-level problems).
"""

__all__ = [
    "DiagnosticRecord",
    "EXPRESSION_ERROR",
    "INVALID_PATTERN",
    "INPUT_ERROR",
]

EXPRESSION_ERROR = "EXPRESSION_ERROR"
INVALID_PATTERN = "INVALID_PATTERN"
INPUT_ERROR = "INPUT_ERROR"


@dataclass(frozen=True)
class DiagnosticRecord:
    """Structured diagnostic for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Workbook name being processed ("" when unknown)
        sheet: Sheet name within the workbook ("" when unknown)
        row: 0-based row index within the sheet, -1 when not row-specific
        error_type: Classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, message: str) -> DiagnosticRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return DiagnosticRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
