from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import pytest

from excel_importer.db.storage import SqlStorage
from excel_importer.excel.reader import read_matrix
from excel_importer.models.column_mapping import column
from excel_importer.models.config_models import ImportControl
from excel_importer.services.correctness import (
    LeafContentItem,
    RecordCountChecker,
    SimpleTreeChecker,
    TableCountInfo,
)
from excel_importer.services.middleware import TreeExcelRewriteMiddleware
from excel_importer.services.tree_pipeline import TreeImportPipeline

"""End-to-end tree import: region / city hierarchy with stores hanging off each city."""

ROWS = [
    ["Region", "City", "Store", "Code", "StoreId"],
    ["north", "oslo", "s1", "1", None],
    ["north", "oslo", "s2", "2", None],
    ["north", "bergen", "s3", "3", None],
    ["south", "rome", "s4", "4", None],
]


@dataclass
class StoreRow:
    region: str = ""
    city: str = ""
    store: str = ""
    code: int = 0
    store_id: str = column("", rewrite=True)


@dataclass
class Area:
    __tablename__ = "areas"
    name: str = column("", chk="tree")
    parent_id: int | None = None
    id: int | None = None


@dataclass
class Store:
    __tablename__ = "stores"
    name: str = column("", chk="on")
    code: int = column(0, chk="on")
    area_id: int | None = column(None, link="parent")
    id: int | None = None


@pytest.fixture()
def db(storage: SqlStorage) -> SqlStorage:
    storage.exec_raw(
        """
        CREATE TABLE areas (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, parent_id INTEGER);
        CREATE TABLE stores (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, code INTEGER, area_id INTEGER);
        """
    )
    return storage


def import_area(storage, node) -> None:
    if node.is_root:
        return
    area = Area(node.value, node.parent_id)
    storage.create(area)
    node.set_id(area.id)
    for record in node.records:
        store = Store(record.store, record.code, area.id)
        storage.create(store)
        record.store_id = str(store.id)


def _tree_checker(*items: LeafContentItem) -> SimpleTreeChecker:
    return SimpleTreeChecker(Area, Store, items, check_key="on", tree_check_key="tree")


def _pipeline(db: SqlStorage, path: Path, checkers, **control) -> TreeImportPipeline:
    return TreeImportPipeline.strict_order(
        db,
        1,
        import_area,
        record_type=StoreRow,
        control=ImportControl(progress=False, **control),
        middlewares=[TreeExcelRewriteMiddleware(path)],
        correctness_checkers=checkers,
    )


@pytest.mark.parametrize("parallel", [False, True])
def test_tree_import_end_to_end(write_xlsx, db: SqlStorage, parallel: bool):
    path = write_xlsx("stores.xlsx", ROWS)
    checkers = [
        RecordCountChecker(TableCountInfo(Area, 5), TableCountInfo(Store, 4)),
        _tree_checker(
            LeafContentItem(Area("oslo"), [Store("s1", 1), Store("s2", 2)]),
            LeafContentItem(Area("bergen"), [Store("s3", 3)]),
            LeafContentItem(Area("rome"), [Store("s4", 4)]),
        ),
    ]
    result = _pipeline(db, path, checkers, enable_parallel=parallel, max_parallel=2).run(path)

    assert result.ok, result.error
    # root + 2 regions + 3 cities
    assert result.total_units == 6
    assert result.succeeded == 6

    north = db.load_by_id(Area, db.query_ordered(Area, {"name": "north"})[0])
    oslo = db.load_by_id(Area, db.query_ordered(Area, {"name": "oslo"})[0])
    assert north.parent_id is None
    assert oslo.parent_id == north.id

    for _, _, name, _, written_id in read_matrix(path)[1:]:
        (stored_id,) = db.query_ordered(Store, {"name": name})
        assert written_id == str(stored_id)


def test_tree_content_mismatch_fails_run(write_xlsx, db: SqlStorage, temp_workdir: Path):
    path = write_xlsx("stores.xlsx", ROWS)
    checkers = [_tree_checker(LeafContentItem(Area("bergen"), [Store("s3", 3), Store("s9", 9)]))]
    result = _pipeline(db, path, checkers).run(path)

    assert not result.ok
    assert "expected 2 records, but got 1" in result.error
    (log,) = (temp_workdir / "logs").glob("errors-*.log")
    entry = json.loads(log.read_text(encoding="utf-8").splitlines()[0])
    assert entry["error_type"] == "CORRECTNESS_VIOLATION"
    assert entry["source"] == "stores.xlsx"
    assert entry["rows"] == []


def test_type_check_reports_source_lines(write_xlsx, db: SqlStorage):
    rows = [list(r) for r in ROWS]
    rows[4][3] = "four"
    path = write_xlsx("stores.xlsx", rows)
    pipeline = _pipeline(db, path, [], enable_type_check=True)
    result = pipeline.run(path)

    assert not result.ok
    assert [r.rows for r in pipeline.error_log.check_errors()] == [[5]]
    assert db.query_count(Area) == 0
    # nothing was imported, so the id column stays empty
    assert [row[4] for row in read_matrix(path)] == ["StoreId", "", "", "", ""]
