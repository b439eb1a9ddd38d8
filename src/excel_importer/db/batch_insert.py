from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .storage import (
    BatchStatement,
    InsertStatement,
    StorageHandle,
    UpdateStatement,
    entity_columns,
    table_name,
)

"""Buffered writes for the batch-write middleware.

Importer effects become parametrized INSERT / UPDATE statements. The buffer
is flushed through ``StorageHandle.exec_batch`` once it reaches the batch
size, so values are always bound by the database driver (``execute_values``
on PostgreSQL). ``None`` fields are left out of INSERTs so column defaults
apply.

Each executed batch can report a ``BatchMetrics`` through a callback
(timing instrumentation for the run summary).
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "BatchInsertError",
    "BatchMetrics",
    "StatementBatch",
    "build_insert_statement",
    "build_update_statement",
]


DEFAULT_BATCH_SIZE = 1000


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single executed batch."""
    batch_size: int  # Number of statements in this batch
    elapsed_seconds: float  # Time spent in exec_batch
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


def build_insert_statement(record: Any) -> InsertStatement:
    """INSERT for one entity instance (``__tablename__`` names the table)."""
    pairs = entity_columns(record, skip_none=True)
    return InsertStatement(
        table=table_name(record),
        columns=tuple(c for c, _ in pairs),
        values=tuple(v for _, v in pairs),
    )


def build_update_statement(table: str, updates: Mapping[str, Any], wheres: Mapping[str, Any]) -> UpdateStatement:
    if not updates or not wheres:
        raise BatchInsertError("UPDATE needs both update values and where conditions")
    return UpdateStatement(table=table, updates=tuple(updates.items()), wheres=tuple(wheres.items()))


class StatementBatch:
    """Statement buffer flushed through ``StorageHandle.exec_batch``.

    Not thread-safe on its own; callers hold the pipeline lock.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self.metrics_callback = metrics_callback
        self.statements: list[BatchStatement] = []
        self.executed_batches = 0
        self.executed_statements = 0

    def __len__(self) -> int:
        return len(self.statements)

    def add(self, storage: StorageHandle, statement: BatchStatement) -> None:
        """Buffer ``statement``; execute the buffer once it reaches the batch size."""
        self.statements.append(statement)
        if len(self.statements) >= self.batch_size:
            self.execute(storage)

    def execute(self, storage: StorageHandle) -> int:
        """Execute everything buffered. Returns the number of statements sent."""
        if not self.statements:
            return 0
        statements = self.statements
        self.statements = []

        start_time = time.time()
        try:
            storage.exec_batch(statements)
        finally:
            end_time = time.time()
            if self.metrics_callback is not None:
                self.metrics_callback(
                    BatchMetrics(
                        batch_size=len(statements),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                    )
                )
        self.executed_batches += 1
        self.executed_statements += len(statements)
        return len(statements)
