from __future__ import annotations

import keyword
import re
from collections.abc import Sequence

from .reader import excel_column_name

"""Record-shape skeleton generation from a sheet's header row.

The kind of each column is inferred from its data cells: int when every
non-empty cell parses as an integer, then float, then bool, else str.
Output is Python source for a dataclass using ``column(...)``.
"""

__all__ = [
    "infer_kind",
    "field_name",
    "render_model",
]

_BOOL_WORDS = {"true", "false", "yes", "no"}
_NON_IDENT = re.compile(r"\W+")


def _is_int(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True


def _is_float(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def infer_kind(values: Sequence[str]) -> type:
    cells = [v.strip() for v in values if v.strip()]
    if not cells:
        return str
    if all(_is_int(v) for v in cells):
        return int
    if all(_is_float(v) for v in cells):
        return float
    if all(v.lower() in _BOOL_WORDS for v in cells):
        return bool
    return str


def field_name(header: str, index: int) -> str:
    """Header text -> Python identifier; falls back to ``col_<letters>``."""
    name = _NON_IDENT.sub("_", header.strip().lower()).strip("_")
    if not name or not name.isidentifier() or name[0].isdigit():
        return f"col_{excel_column_name(index).lower()}"
    if keyword.iskeyword(name):
        name += "_"
    return name


_ZERO_LITERAL = {str: '""', int: "0", float: "0.0", bool: "False"}


def render_model(
    name: str,
    header: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    table: str | None = None,
) -> str:
    """Source text of a dataclass for a sheet with the given header and data rows."""
    lines = [
        "from dataclasses import dataclass",
        "",
        "from excel_importer.models import column",
        "",
        "",
        "@dataclass",
        f"class {name}:",
    ]
    if table:
        lines.append(f'    __tablename__ = "{table}"')
        lines.append("")

    seen: set[str] = set()
    for i, head in enumerate(header):
        ident = field_name(head, i)
        if ident in seen:
            ident = f"{ident}_{excel_column_name(i).lower()}"
        seen.add(ident)
        kind = infer_kind([row[i] if i < len(row) else "" for row in rows])
        comment = f"  # {excel_column_name(i)}"
        if head.strip():
            comment += f" {head.strip()}"
        lines.append(
            f"    {ident}: {kind.__name__} = column({_ZERO_LITERAL[kind]}, index={i}){comment}"
        )
    if not header:
        lines.append("    pass")
    return "\n".join(lines) + "\n"
