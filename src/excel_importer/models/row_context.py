from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .column_mapping import ColumnMapping

"""RowContext / WholeImportContext models.

RowContext wraps one prepared row through the flat pipeline: its section
classification, source position, materialized record, and an effect slot an
importer can fill for middleware (batch writer) to consume.
"""

__all__ = [
    "SectionType",
    "ImportEffect",
    "RowContext",
    "WholeImportContext",
]

SectionType = str


@dataclass
class ImportEffect:
    """Derived write intent deposited by an importer."""
    insert_record: Any = None
    update_record: Any = None
    updates: dict[str, Any] = field(default_factory=dict)
    wheres: dict[str, Any] = field(default_factory=dict)

    @property
    def has_update(self) -> bool:
        return bool(self.updates) and bool(self.wheres)


@dataclass(eq=False)
class RowContext:
    row: int  # 0-based index in the source matrix
    section: SectionType
    cells: list[str]
    record: Any = None
    whole: WholeImportContext | None = field(default=None, repr=False)
    effect: ImportEffect = field(default_factory=ImportEffect, repr=False)

    @property
    def line_number(self) -> int:
        """1-based source line, as reported to operators."""
        return self.row + 1

    @property
    def mapping(self) -> ColumnMapping | None:
        return self.whole.mapping if self.whole is not None else None

    def set_insert_record(self, record: Any) -> None:
        """Queue ``record`` for insertion by the batch writer (needs ``__tablename__``)."""
        self.effect.insert_record = record

    def set_update(self, updates: dict[str, Any], wheres: dict[str, Any], record: Any = None) -> None:
        """Queue an UPDATE; ``record`` (or its type) names the target table."""
        self.effect.update_record = record
        self.effect.updates = dict(updates)
        self.effect.wheres = dict(wheres)


@dataclass
class WholeImportContext:
    rows: list[RowContext] = field(default_factory=list)
    mapping: ColumnMapping | None = None

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def records(self) -> list[Any]:
        return [r.record for r in self.rows]
