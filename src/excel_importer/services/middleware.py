from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..db.batch_insert import (
    DEFAULT_BATCH_SIZE,
    BatchMetrics,
    StatementBatch,
    build_insert_statement,
    build_update_statement,
)
from ..db.storage import StorageHandle, table_name
from ..excel.reader import write_columns
from ..models.column_mapping import ColumnMapping, FieldSpec
from ..models.record import get_field_string
from ..models.row_context import ImportEffect, RowContext, WholeImportContext
from ..models.tree_node import TreeImportContext, TreeNode

"""Middleware chain for the flat and tree pipelines.

A middleware overrides whichever hooks it needs; the base class makes every
hook a no-op. The pipelines call hooks in registration order:

- ``pre_import(storage, ctx)``: once, with the WholeImportContext (flat) or
  the TreeImportContext (tree), before the first unit is imported
- ``post_row_import(storage, row)``: after each successfully imported row
- ``post_node_import(storage, node)``: after each successfully imported tree node
- ``post_handle(storage)``: once, after all units were imported

Per-unit hooks are invoked under the pipeline lock, so implementations need
no locking of their own.
"""

__all__ = [
    "ImportMiddleware",
    "BatchWriteMiddleware",
    "ExcelRewriteMiddleware",
    "TreeExcelRewriteMiddleware",
]

logger = logging.getLogger(__name__)


class ImportMiddleware:
    def pre_import(self, storage: StorageHandle, ctx: Any) -> None:
        pass

    def post_row_import(self, storage: StorageHandle, row: RowContext) -> None:
        pass

    def post_node_import(self, storage: StorageHandle, node: TreeNode) -> None:
        pass

    def post_handle(self, storage: StorageHandle) -> None:
        pass


class BatchWriteMiddleware(ImportMiddleware):
    """Turns importer effects into buffered SQL, executed every ``batch_size`` statements.

    Importers call ``RowContext.set_insert_record`` / ``set_update`` (or fill
    ``TreeNode.effect``) instead of writing themselves.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.batch = StatementBatch(batch_size, metrics_callback=metrics_callback)

    def _consume(self, storage: StorageHandle, effect: ImportEffect) -> None:
        if effect.insert_record is not None:
            self.batch.add(storage, build_insert_statement(effect.insert_record))
        if effect.has_update:
            target = effect.update_record if effect.update_record is not None else effect.insert_record
            if target is None:
                raise ValueError("update effect without a target record")
            self.batch.add(storage, build_update_statement(table_name(target), effect.updates, effect.wheres))

    def post_row_import(self, storage: StorageHandle, row: RowContext) -> None:
        self._consume(storage, row.effect)

    def post_node_import(self, storage: StorageHandle, node: TreeNode) -> None:
        self._consume(storage, node.effect)

    def post_handle(self, storage: StorageHandle) -> None:
        sent = self.batch.execute(storage)
        logger.debug(
            f"batch writer flushed: final={sent} batches={self.batch.executed_batches} "
            f"statements={self.batch.executed_statements}"
        )


class _RewriteBuffer:
    """column index -> {source row -> text}, written back at post_handle."""

    def __init__(self, path: str | Path, writer: Callable[..., None] | None = None) -> None:
        self.path = Path(path)
        self.writer = writer or write_columns
        self.fields: list[tuple[int, FieldSpec]] = []
        self.values: dict[int, dict[int, str]] = {}

    def bind(self, mapping: ColumnMapping | None) -> None:
        self.fields = mapping.rewrite_fields() if mapping is not None else []

    def collect(self, row: int, record: Any) -> None:
        if record is None:
            return
        for i, spec in self.fields:
            self.values.setdefault(spec.column_index, {})[row] = get_field_string(record, i)

    def columns(self) -> tuple[dict[int, list[str | None]], int]:
        """Dense column lists starting at the smallest collected row (gaps are None)."""
        rows = [r for col in self.values.values() for r in col]
        if not rows:
            return {}, 0
        first, last = min(rows), max(rows)
        dense = {
            col: [by_row.get(r) for r in range(first, last + 1)]
            for col, by_row in self.values.items()
        }
        return dense, first

    def write(self) -> None:
        columns, start_row = self.columns()
        if not columns:
            return
        self.writer(self.path, columns, start_row)
        logger.info(f"rewrote {len(columns)} column(s) of {self.path.name}")


class ExcelRewriteMiddleware(ImportMiddleware):
    """Writes ``rewrite``-flagged fields of imported records back to their source cells."""

    def __init__(self, path: str | Path, writer: Callable[..., None] | None = None) -> None:
        self.buffer = _RewriteBuffer(path, writer)

    def pre_import(self, storage: StorageHandle, ctx: WholeImportContext) -> None:
        self.buffer.bind(ctx.mapping)

    def post_row_import(self, storage: StorageHandle, row: RowContext) -> None:
        self.buffer.collect(row.row, row.record)

    def post_handle(self, storage: StorageHandle) -> None:
        self.buffer.write()


class TreeExcelRewriteMiddleware(ImportMiddleware):
    """Tree variant: collects the records attached to each imported leaf."""

    def __init__(self, path: str | Path, writer: Callable[..., None] | None = None) -> None:
        self.buffer = _RewriteBuffer(path, writer)

    def pre_import(self, storage: StorageHandle, ctx: TreeImportContext) -> None:
        self.buffer.bind(ctx.mapping)

    def post_node_import(self, storage: StorageHandle, node: TreeNode) -> None:
        if not node.is_leaf:
            return
        for item in node.items:
            self.buffer.collect(item.row, item.record)

    def post_handle(self, storage: StorageHandle) -> None:
        self.buffer.write()
