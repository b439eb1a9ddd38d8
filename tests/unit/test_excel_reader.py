from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from excel_importer.excel.reader import (
    SourceReadError,
    excel_column_name,
    read_matrix,
    write_columns,
)


def _xlsx(path: Path, rows: list[list[object]], title: str = "Sheet1") -> Path:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def test_read_xlsx_as_text(tmp_path: Path):
    path = _xlsx(tmp_path / "a.xlsx", [["name", "qty"], ["tea", 3], ["cola", None]])
    assert read_matrix(path) == [["name", "qty"], ["tea", "3"], ["cola", ""]]


def test_read_named_sheet(tmp_path: Path):
    path = _xlsx(tmp_path / "a.xlsx", [["first"]])
    wb = openpyxl.load_workbook(path)
    wb.create_sheet("Other").append(["second"])
    wb.save(path)
    assert read_matrix(path, sheet="Other") == [["second"]]
    assert read_matrix(path, sheet=1) == [["second"]]


def test_read_csv_keep_na_strings(tmp_path: Path):
    path = tmp_path / "a.csv"
    path.write_text("code,label\nNA,North America\nN/A,none\n", encoding="utf-8")
    assert read_matrix(path) == [["code", "label"], ["", "North America"], ["", "none"]]
    assert read_matrix(path, keep_na_strings=["NA"]) == [
        ["code", "label"],
        ["NA", "North America"],
        ["", "none"],
    ]


def test_read_errors(tmp_path: Path):
    with pytest.raises(SourceReadError, match="not found"):
        read_matrix(tmp_path / "missing.xlsx")
    bad = tmp_path / "a.txt"
    bad.write_text("x", encoding="utf-8")
    with pytest.raises(SourceReadError, match="unsupported"):
        read_matrix(bad)


def test_write_columns_xlsx(tmp_path: Path):
    path = _xlsx(tmp_path / "a.xlsx", [["name", "code"], ["tea", ""], ["cola", ""], ["milk", "keep"]])
    write_columns(path, {1: ["T-1", "C-2", None]}, start_row=1)
    assert read_matrix(path) == [["name", "code"], ["tea", "T-1"], ["cola", "C-2"], ["milk", "keep"]]


def test_write_columns_csv_extends_sheet(tmp_path: Path):
    path = tmp_path / "a.csv"
    path.write_text("name\ntea\n", encoding="utf-8")
    write_columns(path, {2: ["x", "y"]}, start_row=1)
    assert read_matrix(path) == [["name", "", ""], ["tea", "", "x"], ["", "", "y"]]


@pytest.mark.parametrize("index, name", [(0, "A"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ"), (702, "AAA")])
def test_excel_column_name(index: int, name: str):
    assert excel_column_name(index) == name


def test_excel_column_name_negative():
    with pytest.raises(ValueError):
        excel_column_name(-1)
