from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from xlsx_filter.models.error_record import DiagnosticRecord

"""Diagnostic buffering module.

Recoverable problems are surfaced through this channel rather than through the
pipeline output:
- each record is logged at WARN as soon as it is reported
- records are buffered and written as JSON Lines on flush()
- the file ``logs/diagnostics-YYYYMMDD-HHMMSS.log`` (UTC) is created on first use
"""

__all__ = [
    "DiagnosticRecord",
    "DiagnosticBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

logger = logging.getLogger(__name__)


class DiagnosticBuffer:
    """In-memory buffer for diagnostic records. Flush writes JSON Lines.

    Thread safety is not needed: batches are processed one at a time.
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[DiagnosticRecord] = []
        self._logs_dir = logs_dir if logs_dir is not None else LOGS_DIR
        self._file_path: Path | None = None
        self.total_reported = 0

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"diagnostics-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[DiagnosticRecord]:
        return list(self._records)

    def append(self, record: DiagnosticRecord) -> None:
        self._records.append(record)
        self.total_reported += 1

    def report(
        self,
        error_type: str,
        message: str,
        *,
        file: str = "",
        sheet: str = "",
        row: int = -1,
    ) -> DiagnosticRecord:
        """Create, log and buffer a record in one step."""
        record = DiagnosticRecord.create(file=file, sheet=sheet, row=row, error_type=error_type, message=message)
        logger.warning("%s file=%s sheet=%s row=%d: %s", error_type, file or "-", sheet or "-", row, message)
        self.append(record)
        return record

    def clear(self) -> None:
        """Drop buffered records without writing them; total_reported is kept."""
        self._records.clear()

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; no file is created when empty."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
