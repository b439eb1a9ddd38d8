from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

"""Cell matrix preprocessing.

Order of operations (applied once per run, before classification):
1. drop rows before ``start_row``
2. truncate at the first row matching the end-of-data predicate
3. drop rows for which ``row_filter`` returns True
4. right-pad rows with "" up to ``min_columns`` (short rows are never dropped)
5. format every cell

No errors are raised here; malformed rows surface later as validation failures.
"""

__all__ = [
    "CellFormatter",
    "RowPredicate",
    "PreparedMatrix",
    "MAX_CODE_POINT",
    "format_cell",
    "default_row_end",
    "transpose",
    "preprocess_matrix",
]

CellFormatter = Callable[[str], str]
RowPredicate = Callable[[Sequence[str]], bool]

# Code points at or above this (supplementary private use planes) are stripped
MAX_CODE_POINT = 0x100000


def format_cell(cell: str) -> str:
    """Default cell formatter: strip overlong code points, then trim whitespace."""
    return "".join(ch for ch in cell if ord(ch) < MAX_CODE_POINT).strip()


def default_row_end(row: Sequence[str]) -> bool:
    """End of data: an empty row, or a row whose first cell is empty."""
    return len(row) == 0 or len(row[0]) == 0


def transpose(matrix: Sequence[Sequence[str]]) -> list[list[str]]:
    """Row-major -> column-major. Ragged rows are padded with "" to the widest row."""
    if not matrix:
        return []
    width = max(len(row) for row in matrix)
    return [[row[i] if i < len(row) else "" for row in matrix] for i in range(width)]


@dataclass
class PreparedMatrix:
    """Preprocessed rows plus the 0-based source index of each surviving row."""
    rows: list[list[str]]
    source_rows: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def line_number(self, i: int) -> int:
        """1-based line number in the source for the i-th prepared row."""
        return self.source_rows[i] + 1


def preprocess_matrix(
    matrix: Sequence[Sequence[object]],
    *,
    start_row: int = 0,
    row_end: RowPredicate | None = None,
    row_filter: RowPredicate | None = None,
    min_columns: int = 0,
    cell_formatter: CellFormatter | None = None,
) -> PreparedMatrix:
    """Normalize a raw matrix according to the module-level rules."""
    indexed = [
        (start_row + i, ["" if c is None else str(c) for c in row])
        for i, row in enumerate(matrix[start_row:])
    ]

    if row_end is not None:
        for i, (_, row) in enumerate(indexed):
            if row_end(row):
                indexed = indexed[:i]
                break

    if row_filter is not None:
        indexed = [(src, row) for src, row in indexed if not row_filter(row)]

    fc = cell_formatter or format_cell
    rows: list[list[str]] = []
    source_rows: list[int] = []
    for src, row in indexed:
        if len(row) < min_columns:
            row = row + [""] * (min_columns - len(row))
        rows.append([fc(cell) for cell in row])
        source_rows.append(src)

    return PreparedMatrix(rows=rows, source_rows=source_rows)
