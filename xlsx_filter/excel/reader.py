from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ..services.orchestrator import is_lock_file

"""Excel reader adapter for the CLI.

The filter engine consumes parsed ``file -> sheet -> rows`` structures; this
module produces them from ``.xlsx`` files with pandas:
- first row (``header_row``) is the header, later rows are data rows
- rows where every cell is empty are dropped
- empty cells become None, numpy scalars become Python values, timestamps ISO strings
"""

__all__ = [
    "WorkbookReadError",
    "read_directory",
    "read_workbook",
    "scan_excel_files",
    "to_python_value",
]


class WorkbookReadError(Exception):
    """Raised when a workbook or directory cannot be read."""


def to_python_value(val: Any) -> Any:
    if val is None:
        return None
    if isinstance(val, pd.Timestamp):
        return None if pd.isna(val) else val.isoformat()
    if isinstance(val, (float, np.floating)) and pd.isna(val):
        return None
    if isinstance(val, np.generic):
        return val.item()
    if val is pd.NaT:
        return None
    return val


def _header(df: pd.DataFrame, header_row: int) -> list[str]:
    columns = []
    for idx, cell in enumerate(df.iloc[header_row].tolist()):
        # ヘッダ空欄は pandas と同じ "Unnamed: n" 表記
        columns.append(f"Unnamed: {idx}" if pd.isna(cell) else str(to_python_value(cell)))
    return columns


def read_workbook(path: Path, header_row: int = 0) -> dict[str, list[dict[str, Any]]]:
    """Read every sheet of a workbook into sheet name -> rows."""
    try:
        xls = pd.ExcelFile(path)
    except Exception as e:
        raise WorkbookReadError(f"cannot open workbook {path.name}: {e}") from e

    sheets: dict[str, list[dict[str, Any]]] = {}
    for name in xls.sheet_names:
        df = xls.parse(name, header=None)
        if df.shape[0] <= header_row:
            sheets[str(name)] = []
            continue
        columns = _header(df, header_row)
        rows: list[dict[str, Any]] = []
        for _, raw in df.iloc[header_row + 1:].iterrows():
            if raw.isna().all():
                continue
            rows.append({col: to_python_value(v) for col, v in zip(columns, raw.tolist(), strict=False)})
        sheets[str(name)] = rows
    return sheets


def scan_excel_files(directory: Path) -> list[Path]:
    """List ``.xlsx`` files in a directory (non-recursive, sorted by name)."""
    if not directory.exists():
        raise WorkbookReadError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise WorkbookReadError(f"Path is not a directory: {directory}")
    try:
        return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == ".xlsx")
    except OSError as e:
        raise WorkbookReadError(f"Error reading directory {directory}: {e}") from e


def read_directory(directory: Path, header_row: int = 0) -> dict[str, Any]:
    """Build a batch object ``{"data": {file: {sheet: rows}}}`` from a directory.

    Lock files are listed with an empty sheet map and left for the pipeline to skip.
    """
    data: dict[str, Any] = {}
    for path in scan_excel_files(directory):
        data[path.name] = {} if is_lock_file(path.name) else read_workbook(path, header_row)
    return {"data": data}
