from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import openpyxl
import pandas as pd
import pandas._libs.parsers as parsers

"""Tabular source reader / writer.

``read_matrix`` returns the raw cell matrix (every cell as text, missing
cells as ""); preprocessing happens later in the pipelines.
``write_columns`` writes values back into given columns starting at a
0-based matrix row, leaving ``None`` entries untouched.

Supported formats: .xlsx (pandas + openpyxl) and .csv (pandas).
"""

__all__ = [
    "SourceReadError",
    "SUPPORTED_SUFFIXES",
    "read_matrix",
    "write_columns",
    "excel_column_name",
]

SUPPORTED_SUFFIXES = (".xlsx", ".csv")


class SourceReadError(Exception):
    """Raised when a source file is missing or has an unsupported format."""


def _na_options(keep_na_strings: Sequence[str] | None) -> tuple[list[str] | None, bool]:
    # pandas turns "NA", "NULL", "N/A", ... into NaN by default; keep the listed ones as text
    if keep_na_strings:
        return list(parsers.STR_NA_VALUES - set(keep_na_strings)), False
    return None, True


def _check_source(path: Path) -> str:
    if not path.exists():
        raise SourceReadError(f"source file not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise SourceReadError(f"unsupported source format: {path.name}")
    return suffix


def read_matrix(
    path: Path | str,
    sheet: str | int | None = None,
    keep_na_strings: Sequence[str] | None = None,
) -> list[list[str]]:
    """Read one sheet (the first by default) as a list of text rows.

    Parameters
    ----------
    path: .xlsx or .csv file
    sheet: sheet name or index (ignored for csv)
    keep_na_strings: strings pandas would treat as NaN but that must stay text (e.g. ['NA'])
    """
    path = Path(path)
    suffix = _check_source(path)
    na_values, keep_default_na = _na_options(keep_na_strings)

    if suffix == ".csv":
        df = pd.read_csv(
            path, header=None, dtype=str, keep_default_na=keep_default_na, na_values=na_values
        )
    else:
        df = pd.read_excel(
            path,
            sheet_name=0 if sheet is None else sheet,
            header=None,
            dtype=str,
            keep_default_na=keep_default_na,
            na_values=na_values,
        )
    df = df.fillna("")
    return [[str(v) for v in row] for row in df.itertuples(index=False, name=None)]


def write_columns(
    path: Path | str,
    columns: Mapping[int, Sequence[str | None]],
    start_row: int,
    sheet: str | None = None,
) -> None:
    """Write ``columns[col][i]`` into matrix cell (start_row + i, col)."""
    path = Path(path)
    suffix = _check_source(path)

    if suffix == ".xlsx":
        wb = openpyxl.load_workbook(path)
        try:
            ws = wb[sheet] if sheet is not None else wb.worksheets[0]
            for col, values in columns.items():
                for i, value in enumerate(values):
                    if value is None:
                        continue
                    ws.cell(row=start_row + i + 1, column=col + 1, value=value)
            wb.save(path)
        finally:
            wb.close()
        return

    df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
    width = max([df.shape[1], *(c + 1 for c in columns)])
    height = max([df.shape[0], *(start_row + len(v) for v in columns.values())])
    df = df.reindex(index=range(height), columns=range(width), fill_value="")
    df = df.fillna("")
    for col, values in columns.items():
        for i, value in enumerate(values):
            if value is None:
                continue
            df.iat[start_row + i, col] = value
    df.to_csv(path, header=False, index=False)


def excel_column_name(index: int) -> str:
    """0-based column index -> spreadsheet letters (0 -> A, 25 -> Z, 26 -> AA)."""
    if index < 0:
        raise ValueError(f"column index must be >= 0, got {index}")
    name = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        name = chr(ord("A") + rem) + name
    return name
