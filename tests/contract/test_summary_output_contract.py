from __future__ import annotations

import re
from pathlib import Path

from excel_importer.logging.init import setup_logging
from excel_importer.models.config_models import ImportControl
from excel_importer.services.flat_pipeline import FlatImportPipeline

"""SUMMARY line contract: exactly one line per run, fixed key order."""

SUMMARY_RE = re.compile(
    r"^SUMMARY source=(?P<source>\S+) status=(?P<status>ok|failed) "
    r"units=(?P<done>\d+)/(?P<total>\d+) succeeded=(?P<succeeded>\d+) failed=(?P<failed>\d+) "
    r"skipped=(?P<skipped>\d+) rows=(?P<rows>\d+) batches=(?P<batches>\d+) "
    r"elapsed_sec=(?P<elapsed>[0-9.]+) throughput_ups=(?P<throughput>[0-9.]+)$"
)


def _summary_lines(out: str) -> list[str]:
    return [line for line in out.splitlines() if line.startswith("SUMMARY ")]


def test_summary_on_success(temp_workdir: Path, storage, capsys):
    setup_logging()
    pipeline = FlatImportPipeline.one_section(storage, lambda s, rc: None, control=ImportControl(progress=False))
    pipeline.run_matrix([["h"], ["a"], ["b"], ["c"]])
    (line,) = _summary_lines(capsys.readouterr().out)
    m = SUMMARY_RE.match(line)
    assert m is not None, line
    assert m["status"] == "ok"
    assert (m["done"], m["total"], m["succeeded"], m["failed"], m["rows"]) == ("3", "3", "3", "0", "3")


def test_summary_on_failure(temp_workdir: Path, storage, capsys):
    setup_logging()

    def importer(s, rc) -> None:
        if rc.cells[0] == "b":
            raise RuntimeError("no")

    pipeline = FlatImportPipeline.one_section(storage, importer, control=ImportControl(progress=False))
    result = pipeline.run_matrix([["h"], ["a"], ["b"], ["c"]])
    (line,) = _summary_lines(capsys.readouterr().out)
    m = SUMMARY_RE.match(line)
    assert m is not None, line
    assert m["status"] == "failed"
    assert (m["done"], m["total"], m["succeeded"], m["failed"]) == ("2", "3", "1", "1")
    assert result.failed == 1
