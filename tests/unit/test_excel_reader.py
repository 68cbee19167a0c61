from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from xlsx_filter.excel.reader import (
    WorkbookReadError,
    read_directory,
    read_workbook,
    scan_excel_files,
    to_python_value,
)


def _write_book(path: Path, sheets: dict[str, list[list[object]]]) -> None:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)


def test_to_python_value():
    assert to_python_value(np.int64(3)) == 3 and isinstance(to_python_value(np.int64(3)), int)
    assert to_python_value(np.float64("nan")) is None
    assert to_python_value(float("nan")) is None
    assert to_python_value(pd.Timestamp("2024-01-02")) == "2024-01-02T00:00:00"
    assert to_python_value(pd.NaT) is None
    assert to_python_value("x") == "x"


def test_read_workbook_rows_as_dicts(tmp_path: Path):
    book = tmp_path / "orders.xlsx"
    _write_book(book, {
        "Orders": [["Name", "Amount", None], ["a", 10, "x"], [None, None, None], ["b", 7, None]],
        "Empty": [["Only header"]],
    })
    sheets = read_workbook(book)
    assert list(sheets) == ["Orders", "Empty"]
    assert sheets["Orders"] == [
        {"Name": "a", "Amount": 10, "Unnamed: 2": "x"},
        {"Name": "b", "Amount": 7, "Unnamed: 2": None},
    ]
    assert sheets["Empty"] == []


def test_read_workbook_header_row(tmp_path: Path):
    book = tmp_path / "h.xlsx"
    _write_book(book, {"S": [["title"], ["Name", "Amount"], ["a", 1]]})
    assert read_workbook(book, header_row=1)["S"] == [{"Name": "a", "Amount": 1}]


def test_read_workbook_not_excel(tmp_path: Path):
    bad = tmp_path / "bad.xlsx"
    bad.write_bytes(b"not a workbook")
    with pytest.raises(WorkbookReadError):
        read_workbook(bad)


def test_scan_excel_files(tmp_path: Path):
    (tmp_path / "b.xlsx").write_bytes(b"")
    (tmp_path / "a.XLSX").write_bytes(b"")
    (tmp_path / "c.csv").write_text("x")
    assert [p.name for p in scan_excel_files(tmp_path)] == ["a.XLSX", "b.xlsx"]
    with pytest.raises(WorkbookReadError):
        scan_excel_files(tmp_path / "missing")
    with pytest.raises(WorkbookReadError):
        scan_excel_files(tmp_path / "c.csv")


def test_read_directory_skips_lock_file_content(tmp_path: Path):
    _write_book(tmp_path / "book.xlsx", {"S": [["A"], [1]]})
    (tmp_path / "~$book.xlsx").write_bytes(b"lock")
    batch = read_directory(tmp_path)
    assert batch == {"data": {"book.xlsx": {"S": [{"A": 1}]}, "~$book.xlsx": {}}}
