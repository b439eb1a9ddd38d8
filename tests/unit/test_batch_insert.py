from __future__ import annotations

from dataclasses import dataclass
from unittest.mock import Mock

import pytest

from excel_importer.db.batch_insert import (
    BatchInsertError,
    StatementBatch,
    build_insert_statement,
    build_update_statement,
)
from excel_importer.db.storage import InsertStatement, UpdateStatement


@dataclass
class Drink:
    __tablename__ = "drinks"
    name: str = ""
    price: float | None = None
    id: int | None = None


@dataclass
class Empty:
    __tablename__ = "empty"
    id: int | None = None


def test_insert_statement_skips_none():
    assert build_insert_statement(Drink("cola")) == InsertStatement("drinks", ("name",), ("cola",))
    assert build_insert_statement(Drink("50% off", 2.0, 7)) == InsertStatement(
        "drinks", ("name", "price", "id"), ("50% off", 2.0, 7)
    )
    assert build_insert_statement(Empty()) == InsertStatement("empty", (), ())


def test_update_statement():
    stmt = build_update_statement("drinks", {"price": 3, "name": "x"}, {"id": 5, "deleted": None})
    assert stmt == UpdateStatement(
        "drinks", (("price", 3), ("name", "x")), (("id", 5), ("deleted", None))
    )
    with pytest.raises(BatchInsertError):
        build_update_statement("drinks", {}, {"id": 1})
    with pytest.raises(BatchInsertError):
        build_update_statement("drinks", {"a": 1}, {})


def test_statement_batch_executes_at_batch_size():
    storage = Mock()
    metrics = []
    s1, s2, s3 = (build_insert_statement(Drink(n)) for n in ("a", "b", "c"))
    batch = StatementBatch(2, metrics_callback=metrics.append)
    batch.add(storage, s1)
    storage.exec_batch.assert_not_called()
    batch.add(storage, s2)
    storage.exec_batch.assert_called_once_with([s1, s2])
    batch.add(storage, s3)
    assert len(batch) == 1
    assert batch.execute(storage) == 1
    assert batch.execute(storage) == 0
    assert batch.executed_batches == 2
    assert batch.executed_statements == 3
    assert [m.batch_size for m in metrics] == [2, 1]
    assert all(m.elapsed_seconds >= 0 for m in metrics)
    storage.exec_raw.assert_not_called()


def test_statement_batch_reports_metrics_on_failure():
    storage = Mock()
    storage.exec_batch.side_effect = RuntimeError("constraint")
    metrics = []
    batch = StatementBatch(10, metrics_callback=metrics.append)
    batch.add(storage, build_insert_statement(Drink("a")))
    with pytest.raises(RuntimeError):
        batch.execute(storage)
    assert len(metrics) == 1
    assert batch.executed_batches == 0
