from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from excel_importer.db.storage import SqlStorage
from excel_importer.excel.reader import read_matrix
from excel_importer.models.column_mapping import column
from excel_importer.models.config_models import ImportControl
from excel_importer.services.correctness import (
    OffsetContentExpected,
    OffsetContentItem,
    PartRecordContentChecker,
    RecordCountChecker,
    TableCountInfo,
)
from excel_importer.services.flat_pipeline import FlatImportPipeline
from excel_importer.services.middleware import ExcelRewriteMiddleware

"""End-to-end flat import: xlsx on disk -> sqlite -> ids written back into the workbook."""

ROWS = [
    ["Code", "Name", "Price", "ID"],
    ["A1", "tea", "2.5", None],
    ["A2", "cola", "1", None],
    ["A3", "NA", "3", None],
]


@dataclass
class ProductRow:
    code: str = ""
    name: str = ""
    price: str = column("", fcf="float")
    product_id: str = column("", rewrite=True)


@dataclass
class Product:
    __tablename__ = "products"
    code: str = column("", chk="on")
    name: str = column("", chk="on")
    price: float = column(0.0, chk="on")
    id: int | None = None


@pytest.fixture()
def db(storage: SqlStorage) -> SqlStorage:
    storage.exec_raw(
        "CREATE TABLE products (id INTEGER PRIMARY KEY AUTOINCREMENT, code TEXT UNIQUE, name TEXT, price REAL);"
    )
    return storage


def import_product(storage, rc) -> None:
    product = Product(rc.record.code, rc.record.name, float(rc.record.price))
    storage.create(product)
    rc.record.product_id = str(product.id)


def _pipeline(db: SqlStorage, path: Path, **control) -> FlatImportPipeline:
    control.setdefault("enable_format_check", True)
    return FlatImportPipeline.one_section(
        db,
        import_product,
        record_type=ProductRow,
        control=ImportControl(progress=False, **control),
        middlewares=[ExcelRewriteMiddleware(path)],
        correctness_checkers=[
            RecordCountChecker(TableCountInfo(Product, 3)),
            PartRecordContentChecker(
                offsets=[OffsetContentExpected(Product, [OffsetContentItem(3, Product("A3", "NA", 3.0))], "on")]
            ),
        ],
    )


def test_import_and_rewrite_ids(write_xlsx, db: SqlStorage):
    path = write_xlsx("products.xlsx", ROWS)
    result = _pipeline(db, path).run(path, keep_na_strings=["NA"])

    assert result.ok, result.error
    assert (result.source, result.total_units, result.succeeded) == ("products.xlsx", 3, 3)
    matrix = read_matrix(path, keep_na_strings=["NA"])
    assert [row[3] for row in matrix] == ["ID", "1", "2", "3"]
    # untouched cells survive the write-back
    assert matrix[3][:3] == ["A3", "NA", "3"]


def test_parallel_rewrite_matches_stored_ids(write_xlsx, db: SqlStorage):
    path = write_xlsx("products.xlsx", ROWS)
    result = _pipeline(db, path, enable_parallel=True, max_parallel=3).run(path, keep_na_strings=["NA"])
    assert result.ok, result.error

    for code, _, _, written_id in read_matrix(path, keep_na_strings=["NA"])[1:]:
        (stored_id,) = db.query_ordered(Product, {"code": code})
        assert written_id == str(stored_id)


def test_na_text_lost_without_keep_list(write_xlsx, db: SqlStorage):
    path = write_xlsx("products.xlsx", ROWS)
    result = _pipeline(db, path).run(path)

    # "NA" became an empty name, so the stored content no longer matches
    assert not result.ok
    assert "expected 'NA', but got ''" in result.error


def test_failed_check_leaves_workbook_untouched(write_xlsx, db: SqlStorage, temp_workdir: Path):
    rows = [list(r) for r in ROWS]
    rows[2][2] = "cheap"
    path = write_xlsx("products.xlsx", rows)
    result = _pipeline(db, path).run(path, keep_na_strings=["NA"])

    assert not result.ok
    assert db.query_count(Product) == 0
    assert [row[3] for row in read_matrix(path)] == ["ID", "", "", ""]
    (log,) = (temp_workdir / "logs").glob("errors-*.log")
    assert '"rows": [3]' in log.read_text(encoding="utf-8")


def test_batch_mode_end_to_end(write_xlsx, db: SqlStorage):
    path = write_xlsx("products.xlsx", ROWS)

    def queue_product(storage, rc) -> None:
        rc.set_insert_record(Product(rc.record.code, rc.record.name, float(rc.record.price)))

    pipeline = FlatImportPipeline.one_section(
        db,
        queue_product,
        record_type=ProductRow,
        control=ImportControl(progress=False, enable_batch=True, batch_size=2),
        correctness_checkers=[RecordCountChecker(TableCountInfo(Product, 3))],
    )
    result = pipeline.run(path, keep_na_strings=["NA"])

    assert result.ok, result.error
    assert result.total_batches == 2
    assert db.query_count(Product, {"name": "NA"}) == 1
