from __future__ import annotations

import dataclasses
import functools
import types
import typing
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

"""Column mapping for record shapes.

A record shape is a plain dataclass. Each field may carry import metadata via
``column(...)``; ``resolve_column_mapping`` turns the dataclass into an ordered
``ColumnMapping`` once per type (cached). The pipelines never look at record
internals directly, only through the mapping and the ordinal accessors in
``models.record``.

Index rule: a field without an explicit index takes the next unused index in
declaration order (previous index + 1; 0 for the first field).
"""

__all__ = [
    "FieldSpec",
    "ColumnMapping",
    "ColumnResolver",
    "SUPPORTED_KINDS",
    "column",
    "resolve_column_mapping",
]

SUPPORTED_KINDS = (str, int, float, bool)

# dataclasses.field metadata key
META_KEY = "excel_import"


@dataclass(frozen=True)
class FieldSpec:
    """One field of a record shape and where its value comes from."""
    name: str
    column_index: int
    kind: type = str
    rewrite: bool = False
    check_mode: str | None = None  # compared against a checker's check key
    format_check: str | None = None  # int / float / url / img / hash / cn / en / pinyin
    link_id: str | None = None
    db_column: str | None = None

    @property
    def column_name(self) -> str:
        return self.db_column or self.name

    def matches_check_key(self, key: str) -> bool:
        return self.check_mode is not None and self.check_mode == key


@dataclass(frozen=True)
class ColumnMapping:
    record_type: type
    fields: tuple[FieldSpec, ...]

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __getitem__(self, i: int) -> FieldSpec:
        return self.fields[i]

    @property
    def min_column_count(self) -> int:
        """Smallest row width that covers every mapped column."""
        if not self.fields:
            return 0
        return max(f.column_index for f in self.fields) + 1

    def rewrite_fields(self) -> list[tuple[int, FieldSpec]]:
        return [(i, f) for i, f in enumerate(self.fields) if f.rewrite]

    def by_link_id(self, link_id: str) -> FieldSpec | None:
        for f in self.fields:
            if f.link_id == link_id:
                return f
        return None


ColumnResolver = typing.Callable[[type], ColumnMapping]


def column(
    default: Any = dataclasses.MISSING,
    *,
    index: int | None = None,
    rewrite: bool = False,
    chk: str | None = None,
    fcf: str | None = None,
    link: str | None = None,
    db: str | None = None,
    default_factory: Any = dataclasses.MISSING,
) -> Any:
    """Declare a record field with import metadata.

    Example::

        @dataclass
        class Person:
            name: str = column("", fcf="cn", chk="on")
            age: int = column(0, index=3, fcf="int")
    """
    metadata = {
        META_KEY: {
            "index": index,
            "rewrite": rewrite,
            "chk": chk,
            "fcf": fcf,
            "link": link,
            "db": db,
        }
    }
    if default_factory is not dataclasses.MISSING:
        return dataclasses.field(default_factory=default_factory, metadata=metadata)
    return dataclasses.field(default=default, metadata=metadata)


def _unwrap_kind(annotation: Any) -> type:
    # Optional[int] / int | None -> int
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _unwrap_kind(args[0])
        return str
    if annotation in SUPPORTED_KINDS:
        return annotation
    return str


@functools.lru_cache(maxsize=None)
def resolve_column_mapping(record_type: type) -> ColumnMapping:
    """Build the ColumnMapping of a dataclass record shape."""
    if not dataclasses.is_dataclass(record_type):
        raise TypeError(f"record shape must be a dataclass: {record_type!r}")

    hints = typing.get_type_hints(record_type)
    specs: list[FieldSpec] = []
    next_index = 0
    for f in dataclasses.fields(record_type):
        meta = f.metadata.get(META_KEY, {})
        index = meta.get("index")
        if index is None:
            index = next_index
        next_index = index + 1
        specs.append(
            FieldSpec(
                name=f.name,
                column_index=index,
                kind=_unwrap_kind(hints.get(f.name, str)),
                rewrite=bool(meta.get("rewrite", False)),
                check_mode=meta.get("chk"),
                format_check=meta.get("fcf"),
                link_id=meta.get("link"),
                db_column=meta.get("db"),
            )
        )
    return ColumnMapping(record_type=record_type, fields=tuple(specs))
