from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..models.error_record import STAGE_CHECK, STAGE_IMPORT, ErrorRecord

"""Error sink: buffered, thread-safe, flushed as JSON Lines.

- ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC): one ErrorRecord per line
- ``logs/unexpected-YYYYMMDD-HHMMSS.jsonl``: free-form content records an
  importer wants to keep for later review (``record_content``)

Files are created lazily, only when there is something to write.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "iter_contents",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory sink for check/import failures.

    Every mutation is guarded by one lock; import units append concurrently.
    """

    def __init__(self, source: str = "<matrix>", logs_dir: Path | None = None) -> None:
        self.source = source
        self.logs_dir = logs_dir or LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._history: list[ErrorRecord] = []
        self._contents: list[Any] = []
        self._lock = threading.Lock()
        self._stamp: str | None = None

    def _file_stamp(self) -> str:
        if self._stamp is None:
            self._stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
        return self._stamp

    @property
    def file_path(self) -> Path:
        return self.logs_dir / f"errors-{self._file_stamp()}.log"

    @property
    def contents_path(self) -> Path:
        return self.logs_dir / f"unexpected-{self._file_stamp()}.jsonl"

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._history.append(record)

    def record_check_error(self, rows: Iterable[int], message: str, error_type: str = "CONTENT_INVALID") -> ErrorRecord:
        rec = ErrorRecord.create(self.source, STAGE_CHECK, list(rows), error_type, message)
        self.append(rec)
        return rec

    def record_import_error(self, rows: Iterable[int], message: str, error_type: str = "IMPORT_FAILED") -> ErrorRecord:
        rec = ErrorRecord.create(self.source, STAGE_IMPORT, list(rows), error_type, message)
        self.append(rec)
        return rec

    def record_content(self, content: Any) -> None:
        """Keep an arbitrary JSON-serializable object for operator review."""
        with self._lock:
            self._contents.append(content)

    @property
    def records(self) -> list[ErrorRecord]:
        """Every record appended so far, including already flushed ones."""
        with self._lock:
            return list(self._history)

    def by_row(self, stage: str | None = None) -> dict[int, list[ErrorRecord]]:
        """Index records by each attributed line number."""
        index: dict[int, list[ErrorRecord]] = {}
        for rec in self.records:
            if stage is not None and rec.stage != stage:
                continue
            for row in rec.rows or [-1]:
                index.setdefault(row, []).append(rec)
        return index

    def check_errors(self) -> list[ErrorRecord]:
        return [r for r in self.records if r.stage == STAGE_CHECK]

    def import_errors(self) -> list[ErrorRecord]:
        return [r for r in self.records if r.stage == STAGE_IMPORT]

    def __len__(self) -> int:  # pragma: no cover (trivial)
        with self._lock:
            return len(self._records)

    def flush(self) -> Path | None:
        """Append pending records to the log files. Returns the error log path if written."""
        with self._lock:
            records = list(self._records)
            contents = list(self._contents)
            self._records.clear()
            self._contents.clear()

        written: Path | None = None
        if records:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            written = self.file_path
            with written.open("a", encoding="utf-8") as f:
                for r in records:
                    f.write(r.to_json_line() + "\n")
        if contents:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with self.contents_path.open("a", encoding="utf-8") as f:
                for c in contents:
                    f.write(json.dumps(c, ensure_ascii=False, default=str) + "\n")
        return written


def iter_contents(path: Path) -> Iterator[Any]:
    """Read back a content file written by ``ErrorLogBuffer.flush``."""
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)
