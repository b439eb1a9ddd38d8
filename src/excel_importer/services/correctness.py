from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..db.storage import StorageHandle, Where, quote_identifier, table_name
from ..errors import CorrectnessViolation
from ..models.column_mapping import ColumnMapping, ColumnResolver, resolve_column_mapping
from ..models.record import compare_records

"""Post-import correctness verification.

Every checker snapshots a baseline in ``pre_collect`` (before the import) and
asserts the post-import state in ``check_correct``. A checker configured with
no targets does nothing. Mismatches raise CorrectnessViolation with the
expected and actual values.

- RecordCountChecker: row-count deltas
- PartRecordContentChecker: field equality of new rows addressed by offset
  past the pre-import max id, or of existing rows addressed by id
- SimpleLinkChecker: referential links of new source rows
- SimpleTreeChecker: imported tree leaves and the content rows hanging off them
"""

__all__ = [
    "CorrectnessChecker",
    "TableCountInfo",
    "RecordCountChecker",
    "OffsetContentItem",
    "OffsetContentExpected",
    "IDContentItem",
    "IDContentExpected",
    "PartRecordContentChecker",
    "LinkFunc",
    "SimpleLinkChecker",
    "LeafContentItem",
    "SimpleTreeChecker",
]

logger = logging.getLogger(__name__)


class CorrectnessChecker(Protocol):
    def pre_collect(self, storage: StorageHandle) -> None: ...

    def check_correct(self, storage: StorageHandle) -> None: ...


def _max_id(storage: StorageHandle, entity: type) -> int:
    ids = storage.query_ordered(entity, None, "id DESC", 1)
    return ids[0] if ids else 0


def _describe_where(where: Where) -> str:
    """Readable form of a condition for violation messages (never executed)."""
    if where is None:
        return ""
    if isinstance(where, str):
        return where
    parts = []
    for col, value in where.items():
        if value is None:
            parts.append(f"{quote_identifier(col)} IS NULL")
        else:
            parts.append(f"{quote_identifier(col)} = {value!r}")
    return " AND ".join(parts)


def _ids_after(storage: StorageHandle, entity: type, where: Where, last_id: int, limit: int | None = None) -> list[int]:
    # baseline filtered here; ``where`` may be an equality mapping
    ids = [i for i in storage.query_ordered(entity, where, "id ASC", None) if i > last_id]
    return ids if limit is None else ids[:limit]


@dataclass(frozen=True)
class TableCountInfo:
    entity: type
    count_delta: int
    range_where: Where = None


class RecordCountChecker:
    """Asserts ``count_after == count_before + count_delta`` per entity."""

    def __init__(self, *items: TableCountInfo) -> None:
        self.items = list(items)
        self._before: list[int] | None = None

    def pre_collect(self, storage: StorageHandle) -> None:
        self._before = [storage.query_count(item.entity, item.range_where) for item in self.items]

    def check_correct(self, storage: StorageHandle) -> None:
        if not self.items:
            return
        if self._before is None:
            raise CorrectnessViolation("record count baseline was not collected")
        for item, before in zip(self.items, self._before, strict=True):
            after = storage.query_count(item.entity, item.range_where)
            expected = before + item.count_delta
            if after != expected:
                raise CorrectnessViolation(
                    f"{table_name(item.entity)}: expected {expected} records "
                    f"({before} + {item.count_delta}), but got {after}"
                )


@dataclass(frozen=True)
class OffsetContentItem:
    offset: int  # 1-based position after the pre-import max id
    expected: Any


@dataclass
class OffsetContentExpected:
    entity: type
    items: Sequence[OffsetContentItem]
    check_key: str
    last_id: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        for item in self.items:
            if item.offset < 1:
                raise ValueError(f"offset must be >= 1, got {item.offset}")


@dataclass(frozen=True)
class IDContentItem:
    record_id: int
    expected: Any


@dataclass
class IDContentExpected:
    entity: type
    items: Sequence[IDContentItem]
    check_key: str


class PartRecordContentChecker:
    """Compares selected fields (``check_mode == check_key``) of stored rows."""

    def __init__(
        self,
        offsets: Iterable[OffsetContentExpected] = (),
        ids: Iterable[IDContentExpected] = (),
        resolver: ColumnResolver = resolve_column_mapping,
    ) -> None:
        self.offsets = list(offsets)
        self.ids = list(ids)
        self.resolver = resolver

    def pre_collect(self, storage: StorageHandle) -> None:
        for target in self.offsets:
            target.last_id = _max_id(storage, target.entity)

    def check_correct(self, storage: StorageHandle) -> None:
        for target in self.offsets:
            self._check_offsets(storage, target)
        for target in self.ids:
            self._check_ids(storage, target)

    def _check_offsets(self, storage: StorageHandle, target: OffsetContentExpected) -> None:
        if not target.items:
            return
        mapping = self.resolver(target.entity)
        wanted = max(item.offset for item in target.items)
        ids = storage.query_ordered(target.entity, f"id > {int(target.last_id)}", "id ASC", wanted)
        if len(ids) != wanted:
            raise CorrectnessViolation(
                f"{table_name(target.entity)}: expected at least {wanted} new records "
                f"after id {target.last_id}, but got {len(ids)}"
            )
        for item in target.items:
            actual = storage.load_by_id(target.entity, ids[item.offset - 1])
            compare_records(actual, item.expected, mapping, target.check_key)

    def _check_ids(self, storage: StorageHandle, target: IDContentExpected) -> None:
        mapping = self.resolver(target.entity)
        for item in target.items:
            actual = storage.load_by_id(target.entity, item.record_id)
            if actual is None:
                raise CorrectnessViolation(f"{table_name(target.entity)}: record {item.record_id} not found")
            compare_records(actual, item.expected, mapping, target.check_key)


# record -> (target entity, condition), or None when the record links nowhere
LinkFunc = Callable[[Any], "tuple[type, Where] | None"]


class SimpleLinkChecker:
    """Checks links from rows inserted into ``entity`` during the import.

    mode "every": ``link_func(record)`` gives a (target, condition) per new
    row; each condition must match at least one target row.
    mode "any": at least one new row must satisfy ``link_where``.
    """

    def __init__(
        self,
        entity: type,
        link_func: LinkFunc | None = None,
        *,
        mode: str = "every",
        link_where: Where = None,
    ) -> None:
        if mode not in ("every", "any"):
            raise ValueError(f"unknown link check mode: {mode!r}")
        if mode == "every" and link_func is None:
            raise ValueError("mode 'every' needs a link_func")
        if mode == "any" and link_where is None:
            raise ValueError("mode 'any' needs a link_where condition")
        self.entity = entity
        self.link_func = link_func
        self.mode = mode
        self.link_where = link_where
        self.last_id: int | None = None
        self.range_where: str | None = None

    def pre_collect(self, storage: StorageHandle) -> None:
        self.last_id = _max_id(storage, self.entity)
        self.range_where = f"id > {self.last_id}"

    def _require_range(self) -> str:
        if self.range_where is None:
            raise CorrectnessViolation("link check baseline was not collected")
        return self.range_where

    def check_correct(self, storage: StorageHandle) -> None:
        if self.mode == "any":
            self._check_any(storage)
        else:
            self._check_every(storage)

    def _check_every(self, storage: StorageHandle) -> None:
        assert self.link_func is not None
        range_where = self._require_range()
        checked = 0
        for record_id in storage.query_ordered(self.entity, range_where, "id ASC", None):
            record = storage.load_by_id(self.entity, record_id)
            if record is None:
                continue
            link = self.link_func(record)
            if link is None:
                continue
            target, where = link
            if storage.query_count(target, where) == 0:
                raise CorrectnessViolation(
                    f"{table_name(self.entity)} id={record_id}: linked {table_name(target)} "
                    f"where {_describe_where(where)} not found"
                )
            checked += 1
        logger.debug(f"{table_name(self.entity)}: {checked} link(s) verified")

    def _check_any(self, storage: StorageHandle) -> None:
        self._require_range()
        if not _ids_after(storage, self.entity, self.link_where, self.last_id or 0, limit=1):
            raise CorrectnessViolation(
                f"{table_name(self.entity)}: no new record satisfies {_describe_where(self.link_where)}"
            )


@dataclass(frozen=True)
class LeafContentItem:
    leaf: Any  # expected tree-entity record
    contents: Sequence[Any] = ()  # expected content records, in insertion order


class SimpleTreeChecker:
    """Verifies imported tree leaves and their content rows.

    For each expected leaf, a new ``tree_entity`` row must match the leaf on
    the ``tree_check_key`` fields, and the ``content_entity`` rows whose
    ``link_id``-tagged column points at it must match the expected contents
    (count and ``check_key`` fields, in id order).
    """

    def __init__(
        self,
        tree_entity: type,
        content_entity: type,
        items: Iterable[LeafContentItem] = (),
        *,
        check_key: str,
        tree_check_key: str | None = None,
        link_id: str = "parent",
        resolver: ColumnResolver = resolve_column_mapping,
    ) -> None:
        self.tree_entity = tree_entity
        self.content_entity = content_entity
        self.items = list(items)
        self.check_key = check_key
        self.tree_check_key = tree_check_key or check_key
        self.link_id = link_id
        self.resolver = resolver
        self.last_tree_id: int | None = None

    def pre_collect(self, storage: StorageHandle) -> None:
        self.last_tree_id = _max_id(storage, self.tree_entity)

    def check_correct(self, storage: StorageHandle) -> None:
        if not self.items:
            return
        if self.last_tree_id is None:
            raise CorrectnessViolation("tree check baseline was not collected")
        tree_mapping = self.resolver(self.tree_entity)
        content_mapping = self.resolver(self.content_entity)
        link = content_mapping.by_link_id(self.link_id)
        if link is None:
            raise CorrectnessViolation(
                f"{self.content_entity.__name__} has no field linked as {self.link_id!r}"
            )
        for item in self.items:
            leaf_id = self._find_leaf(storage, tree_mapping, item.leaf)
            self._check_contents(storage, content_mapping, link.column_name, leaf_id, item)

    def _find_leaf(self, storage: StorageHandle, mapping: ColumnMapping, expected: Any) -> int:
        values = {
            spec.column_name: getattr(expected, spec.name)
            for spec in mapping
            if spec.matches_check_key(self.tree_check_key)
        }
        ids = _ids_after(storage, self.tree_entity, values, self.last_tree_id or 0, limit=1)
        if not ids:
            raise CorrectnessViolation(
                f"{table_name(self.tree_entity)}: leaf where {_describe_where(values)} not found"
            )
        return ids[0]

    def _check_contents(
        self,
        storage: StorageHandle,
        mapping: ColumnMapping,
        link_column: str,
        leaf_id: int,
        item: LeafContentItem,
    ) -> None:
        ids = storage.query_ordered(self.content_entity, {link_column: leaf_id}, "id ASC", None)
        if len(ids) != len(item.contents):
            raise CorrectnessViolation(
                f"{table_name(self.content_entity)} under leaf {leaf_id}: "
                f"expected {len(item.contents)} records, but got {len(ids)}"
            )
        for record_id, expected in zip(ids, item.contents, strict=True):
            compare_records(storage.load_by_id(self.content_entity, record_id), expected, mapping, self.check_key)
