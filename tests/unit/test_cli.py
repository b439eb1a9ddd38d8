from __future__ import annotations

from pathlib import Path

import pytest

from excel_importer.cli.__main__ import EXIT_FATAL, EXIT_SUCCESS_ALL, main as cli_main
from excel_importer.logging.init import get_logger


def _csv(temp_workdir: Path) -> Path:
    path = temp_workdir / "data" / "drinks.csv"
    path.write_text("Name,Price,Qty\ntea,2.5,3\ncola,1,\n,,\nlost,0,0\n", encoding="utf-8")
    return path


def test_inspect_prints_preprocessed_rows(temp_workdir: Path, capsys):
    path = _csv(temp_workdir)
    assert cli_main(["inspect", str(path)]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "FILE: drinks.csv rows=2"
    assert out[1] == "  line 2: ['tea', '2.5', '3']"
    assert out[2] == "  line 3: ['cola', '1', '']"


def test_inspect_limit(temp_workdir: Path, capsys):
    path = _csv(temp_workdir)
    cli_main(["inspect", str(path), "--limit", "1", "--start-row", "0"])
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "FILE: drinks.csv rows=3"
    assert len(out) == 2


def test_inspect_missing_file(temp_workdir: Path, capsys):
    assert cli_main(["inspect", "data/none.xlsx"]) == EXIT_FATAL
    assert "ERROR inspect: source file not found" in capsys.readouterr().out


def test_gen_model(temp_workdir: Path, capsys):
    path = _csv(temp_workdir)
    assert cli_main(["gen-model", str(path), "--name", "Drink", "--table", "drinks"]) == EXIT_SUCCESS_ALL
    out = capsys.readouterr().out
    assert "class Drink:" in out
    assert '__tablename__ = "drinks"' in out
    assert "    price: float = column(0.0, index=1)  # B Price" in out
    assert "    qty: int = column(0, index=2)  # C Qty" in out


def test_gen_model_rejects_bad_class_name(temp_workdir: Path, capsys):
    path = _csv(temp_workdir)
    assert cli_main(["gen-model", str(path), "--name", "not valid"]) == EXIT_FATAL
    assert "ERROR gen-model: invalid class name" in capsys.readouterr().out


def test_command_required(temp_workdir: Path):
    with pytest.raises(SystemExit):
        cli_main([])


def test_debug_flag_enables_debug_logging(temp_workdir: Path, capsys):
    path = _csv(temp_workdir)
    cli_main(["--debug", "inspect", str(path)])
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
    assert get_logger().level == 10
