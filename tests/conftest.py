# Shared pytest fixtures
from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from excel_importer.db.storage import SqlStorage
from excel_importer.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _fresh_logging():
    # the app logger binds sys.stdout at setup time; rebuild it per test so capsys sees it
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch, tmp_path: Path) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture()
def sqlite_conn():
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    yield conn
    conn.close()


@pytest.fixture()
def storage(sqlite_conn) -> SqlStorage:
    return SqlStorage(sqlite_conn)


@pytest.fixture()
def write_xlsx(temp_workdir: Path):
    """Write rows into data/<name> with openpyxl and return the path."""
    import openpyxl

    def _write(name: str, rows: list[list[object]]) -> Path:
        wb = openpyxl.Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        path = temp_workdir / "data" / name
        wb.save(path)
        return path

    return _write
