from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from typing import Any

from ..errors import CorrectnessViolation, StructuralError
from .column_mapping import ColumnMapping, FieldSpec

"""Record materialization: one prepared row + ColumnMapping -> record instance.

Empty cells map to the field default when one is declared, otherwise to the
zero value of the field kind ("" / 0 / 0.0 / False). Non-empty cells that do
not parse are a structural error only in strict mode; otherwise the zero value
is kept and the format/type check stage reports the row.
"""

__all__ = [
    "materialize",
    "validate_row_types",
    "parse_cell",
    "get_field",
    "set_field",
    "get_field_string",
    "compare_records",
]

_ZERO: dict[type, Any] = {str: "", int: 0, float: 0.0, bool: False}
_TRUE = {"1", "true", "yes", "y", "t"}
_FALSE = {"0", "false", "no", "n", "f"}


def parse_cell(kind: type, value: str) -> Any:
    """Convert a cell to ``kind``. Raises ValueError on unparsable text."""
    if kind is str:
        return value
    if kind is int:
        return int(value)
    if kind is float:
        return float(value)
    if kind is bool:
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"invalid literal for bool: {value!r}")
    raise ValueError(f"unsupported field kind: {kind!r}")


def _default_for(record_type: type, spec: FieldSpec) -> Any:
    for f in dataclasses.fields(record_type):
        if f.name != spec.name:
            continue
        if f.default is not dataclasses.MISSING:
            return f.default
        if f.default_factory is not dataclasses.MISSING:
            return f.default_factory()
    return _ZERO.get(spec.kind, "")


def materialize(mapping: ColumnMapping, row: Sequence[str], *, strict: bool = False) -> Any:
    """Instantiate ``mapping.record_type`` from one row."""
    width = len(row)
    for spec in mapping:
        if spec.column_index < 0 or spec.column_index >= width:
            raise StructuralError(
                f"field '{spec.name}' column {spec.column_index + 1} out of range (row has {width} cells)"
            )

    values: dict[str, Any] = {}
    for spec in mapping:
        cell = row[spec.column_index]
        if cell == "":
            values[spec.name] = _default_for(mapping.record_type, spec)
            continue
        try:
            values[spec.name] = parse_cell(spec.kind, cell)
        except ValueError as e:
            if strict:
                raise StructuralError(
                    f"column {spec.column_index + 1} is not {spec.kind.__name__}: {cell!r}"
                ) from e
            values[spec.name] = _ZERO.get(spec.kind, "")
    return mapping.record_type(**values)


def validate_row_types(mapping: ColumnMapping, row: Sequence[str]) -> list[str]:
    """Strict shape/type validation without materializing. Empty cells are valid."""
    problems: list[str] = []
    for spec in mapping:
        if spec.column_index >= len(row):
            problems.append(f"column {spec.column_index + 1} missing")
            continue
        cell = row[spec.column_index]
        if cell == "":
            continue
        try:
            parse_cell(spec.kind, cell)
        except ValueError:
            problems.append(f"column {spec.column_index + 1} is not {spec.kind.__name__}: {cell!r}")
    return problems


def get_field(record: Any, i: int) -> Any:
    fields = dataclasses.fields(record)
    if i < 0 or i >= len(fields):
        raise IndexError(f"field index {i} out of range")
    return getattr(record, fields[i].name)


def set_field(record: Any, i: int, value: Any) -> None:
    fields = dataclasses.fields(record)
    if i < 0 or i >= len(fields):
        raise IndexError(f"field index {i} out of range")
    setattr(record, fields[i].name, value)


def get_field_string(record: Any, i: int) -> str:
    """String form of the i-th field, as it would be written back to a sheet."""
    if record is None:
        return ""
    value = get_field(record, i)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)


def compare_records(actual: Any, expected: Any, mapping: ColumnMapping, check_key: str) -> None:
    """Compare only the fields whose check mode matches ``check_key``."""
    if actual is None or expected is None:
        if actual is None and expected is None:
            return
        raise CorrectnessViolation(f"expected record: {expected!r}, but got: {actual!r}")

    for spec in mapping:
        if not spec.matches_check_key(check_key):
            continue
        got = getattr(actual, spec.name)
        want = getattr(expected, spec.name)
        if got != want:
            raise CorrectnessViolation(
                f"{mapping.record_type.__name__}.{spec.name}: expected {want!r}, but got {got!r}"
            )
