from __future__ import annotations

import dataclasses
import itertools
import logging
import sqlite3
import threading
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import execute_values

from ..models.column_mapping import META_KEY

"""Storage handle used by importers, middleware and correctness checkers.

``StorageHandle`` is what the pipelines need: single-record insert, raw
statements, counts, ordered id queries, load by id, and a batched write of
parametrized INSERT / UPDATE statements. ``SqlStorage`` implements it on top
of any DB-API 2.0 connection:

- psycopg2 (``connect_postgres``): ``%s`` placeholders, ``INSERT ... RETURNING id``,
  batched INSERTs through ``psycopg2.extras.execute_values``
- sqlite3 (tests): ``?`` placeholders, ``cursor.lastrowid``, ``executemany``

Values always travel as driver parameters; only identifiers are quoted here.
Entities are dataclasses with a ``__tablename__`` attribute and an integer
``id`` primary key. Transaction boundaries belong to the caller: SqlStorage
never commits or rolls back.
"""

__all__ = [
    "Where",
    "InsertStatement",
    "UpdateStatement",
    "BatchStatement",
    "StorageHandle",
    "SqlStorage",
    "StorageError",
    "table_name",
    "entity_columns",
    "quote_identifier",
    "split_statements",
    "connect_postgres",
]

logger = logging.getLogger(__name__)

# raw SQL fragment, or equality conditions joined with AND
Where = str | Mapping[str, Any] | None


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class InsertStatement:
    table: str
    columns: tuple[str, ...]
    values: tuple[Any, ...]


@dataclass(frozen=True)
class UpdateStatement:
    table: str
    updates: tuple[tuple[str, Any], ...]
    wheres: tuple[tuple[str, Any], ...]


BatchStatement = InsertStatement | UpdateStatement


class StorageHandle(Protocol):
    def create(self, record: Any) -> Any: ...

    def exec_raw(self, statement: str) -> None: ...

    def exec_batch(self, statements: Sequence[BatchStatement]) -> None: ...

    def query_count(self, entity: type, where: Where = None) -> int: ...

    def query_ordered(
        self, entity: type, where: Where = None, order: str = "id ASC", limit: int | None = None
    ) -> list[int]: ...

    def load_by_id(self, entity: type, record_id: int) -> Any | None: ...


def table_name(entity: Any) -> str:
    """Table of an entity class or instance (``__tablename__``)."""
    name = getattr(entity, "__tablename__", None)
    if not name:
        cls = entity if isinstance(entity, type) else type(entity)
        raise StorageError(f"{cls.__name__} does not define __tablename__")
    return str(name)


def _column_of(f: dataclasses.Field[Any]) -> str:
    return f.metadata.get(META_KEY, {}).get("db") or f.name


def entity_columns(record: Any, *, skip_none: bool = True) -> list[tuple[str, Any]]:
    """(column, value) pairs of a dataclass record, in field order.

    A ``None`` id is always left out so the database assigns one.
    """
    pairs: list[tuple[str, Any]] = []
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        if value is None and (skip_none or f.name == "id"):
            continue
        pairs.append((_column_of(f), value))
    return pairs


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def split_statements(script: str) -> list[str]:
    """Split a ``;``-separated script into single statements.

    A ``;`` inside a quoted literal does not end a statement.
    """
    statements: list[str] = []
    pending = ""
    for part in script.split(";"):
        pending += part + ";"
        if sqlite3.complete_statement(pending):
            if pending.strip(" \t\r\n;"):
                statements.append(pending.strip())
            pending = ""
    if pending.strip(" \t\r\n;"):
        # unterminated literal; let the database report it
        statements.append(pending.strip())
    return statements


def _batch_groups(statements: Sequence[BatchStatement]) -> Iterator[list[BatchStatement]]:
    # consecutive INSERTs into the same table and columns travel together
    def key(stmt: BatchStatement) -> object:
        if isinstance(stmt, InsertStatement):
            return (stmt.table, stmt.columns)
        return id(stmt)

    for _, group in itertools.groupby(statements, key=key):
        yield list(group)


class SqlStorage:
    """StorageHandle over a DB-API connection. Cursor use is serialized."""

    def __init__(
        self,
        connection: Any,
        *,
        placeholder: str = "?",
        returning: bool = False,
        bulk_insert: bool = False,
        multi_statement: bool = False,
    ) -> None:
        self.connection = connection
        self.placeholder = placeholder
        self.returning = returning
        # execute_values for batched INSERTs (psycopg2 only)
        self.bulk_insert = bulk_insert
        # driver accepts several statements in one execute()
        self.multi_statement = multi_statement
        self._lock = threading.RLock()

    def _where_sql(self, where: Where) -> tuple[str, list[Any]]:
        if where is None:
            return "", []
        if isinstance(where, str):
            return (f" WHERE {where}" if where.strip() else ""), []
        if not where:
            return "", []
        clauses = []
        params: list[Any] = []
        for col, value in where.items():
            if value is None:
                clauses.append(f"{quote_identifier(col)} IS NULL")
            else:
                clauses.append(f"{quote_identifier(col)} = {self.placeholder}")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> Any:
        cur = self.connection.cursor()
        try:
            # without parameters psycopg2 must not treat '%' as a placeholder
            if params:
                cur.execute(sql, tuple(params))
            else:
                cur.execute(sql)
        except Exception:
            cur.close()
            raise
        return cur

    def create(self, record: Any) -> Any:
        """INSERT ``record`` and set its ``id`` from the database."""
        table = table_name(record)
        pairs = entity_columns(record, skip_none=False)
        cols = ",".join(quote_identifier(c) for c, _ in pairs)
        marks = ",".join(self.placeholder for _ in pairs)
        sql = f"INSERT INTO {quote_identifier(table)} ({cols}) VALUES ({marks})"
        if self.returning:
            sql += " RETURNING id"
        with self._lock:
            cur = self._execute(sql, [v for _, v in pairs])
            try:
                new_id = cur.fetchone()[0] if self.returning else cur.lastrowid
            finally:
                cur.close()
        if hasattr(record, "id"):
            record.id = new_id
        return new_id

    def exec_raw(self, statement: str) -> None:
        """Execute one or more ``;``-separated statements inside the caller's transaction."""
        if not statement.strip():
            return
        statements = [statement] if self.multi_statement else split_statements(statement)
        with self._lock:
            for sql in statements:
                cur = self._execute(sql)
                cur.close()

    def _insert_rows(self, cur: Any, statements: list[InsertStatement]) -> None:
        first = statements[0]
        table = quote_identifier(first.table)
        if not first.columns:
            for _ in statements:
                cur.execute(f"INSERT INTO {table} DEFAULT VALUES")
            return
        cols = ",".join(quote_identifier(c) for c in first.columns)
        rows = [s.values for s in statements]
        if self.bulk_insert:
            execute_values(cur, f"INSERT INTO {table} ({cols}) VALUES %s", rows, page_size=len(rows))
            return
        marks = ",".join(self.placeholder for _ in first.columns)
        cur.executemany(f"INSERT INTO {table} ({cols}) VALUES ({marks})", rows)

    def _update(self, cur: Any, stmt: UpdateStatement) -> None:
        sets = ", ".join(f"{quote_identifier(c)} = {self.placeholder}" for c, _ in stmt.updates)
        clause, where_params = self._where_sql(dict(stmt.wheres))
        params = [v for _, v in stmt.updates] + where_params
        cur.execute(f"UPDATE {quote_identifier(stmt.table)} SET {sets}{clause}", tuple(params))

    def exec_batch(self, statements: Sequence[BatchStatement]) -> None:
        """Execute buffered INSERT / UPDATE statements with driver-side parameter binding."""
        if not statements:
            return
        with self._lock:
            cur = self.connection.cursor()
            try:
                for group in _batch_groups(statements):
                    head = group[0]
                    if isinstance(head, InsertStatement):
                        self._insert_rows(cur, group)  # type: ignore[arg-type]
                    else:
                        self._update(cur, head)
            finally:
                cur.close()

    def query_count(self, entity: type, where: Where = None) -> int:
        clause, params = self._where_sql(where)
        sql = f"SELECT COUNT(*) FROM {quote_identifier(table_name(entity))}{clause}"
        with self._lock:
            cur = self._execute(sql, params)
            try:
                return int(cur.fetchone()[0])
            finally:
                cur.close()

    def query_ordered(
        self, entity: type, where: Where = None, order: str = "id ASC", limit: int | None = None
    ) -> list[int]:
        clause, params = self._where_sql(where)
        sql = f"SELECT id FROM {quote_identifier(table_name(entity))}{clause} ORDER BY {order}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        with self._lock:
            cur = self._execute(sql, params)
            try:
                return [int(r[0]) for r in cur.fetchall()]
            finally:
                cur.close()

    def load_by_id(self, entity: type, record_id: int) -> Any | None:
        fields = dataclasses.fields(entity)
        cols = ",".join(quote_identifier(_column_of(f)) for f in fields)
        sql = (
            f"SELECT {cols} FROM {quote_identifier(table_name(entity))} "
            f"WHERE id = {self.placeholder}"
        )
        with self._lock:
            cur = self._execute(sql, [record_id])
            try:
                row = cur.fetchone()
            finally:
                cur.close()
        if row is None:
            return None
        values = {f.name: row[i] for i, f in enumerate(fields) if f.init}
        record = entity(**values)
        for i, f in enumerate(fields):
            if not f.init:
                setattr(record, f.name, row[i])
        return record


def connect_postgres(dsn: str) -> tuple[Any, SqlStorage]:
    """Open a psycopg2 connection and wrap it. Returns (connection, storage)."""
    conn = psycopg2.connect(dsn)
    logger.debug("connected to PostgreSQL")
    return conn, SqlStorage(conn, placeholder="%s", returning=True, bulk_insert=True, multi_statement=True)
