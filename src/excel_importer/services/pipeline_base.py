from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.batch_insert import BatchMetrics
from ..db.storage import StorageHandle
from ..errors import ContentCheckError, ImportPipelineError, RowImportError
from ..excel.reader import read_matrix
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary
from ..models.config_models import ImportControl
from ..models.processing_result import STATUS_FAILED, STATUS_OK, BatchStatsAccumulator, ImportResult
from .correctness import CorrectnessChecker
from .middleware import BatchWriteMiddleware, ImportMiddleware
from .progress import ImportProgress
from .summary import render_summary_line

"""Lifecycle shared by the flat and tree pipelines.

``run`` / ``run_matrix`` drive one complete import:

    pre-collect correctness baselines -> parse -> check -> pre-import middleware
    -> import units -> middleware post_handle -> post-handlers -> correctness checks

and always flush the error sink, report progress and log the SUMMARY line,
even when a stage fails. Transactions stay with the caller: nothing here
commits or rolls back.
"""

__all__ = [
    "PipelineState",
    "PostHandler",
    "BasePipeline",
]

logger = logging.getLogger(__name__)

PostHandler = Callable[[StorageHandle], None]


class PipelineState(enum.Enum):
    IDLE = "IDLE"
    PARSED = "PARSED"
    CHECKED = "CHECKED"
    IMPORTED = "IMPORTED"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


class BasePipeline:
    kind = "import"

    def __init__(
        self,
        storage: StorageHandle,
        *,
        control: ImportControl | None = None,
        middlewares: Iterable[ImportMiddleware] = (),
        post_handlers: Iterable[PostHandler] = (),
        correctness_checkers: Iterable[CorrectnessChecker] = (),
        error_log: ErrorLogBuffer | None = None,
        logs_dir: Path | None = None,
    ) -> None:
        self.storage = storage
        self.control = control or ImportControl()
        self.middlewares: list[ImportMiddleware] = list(middlewares)
        self.post_handlers: list[PostHandler] = list(post_handlers)
        self.correctness_checkers: list[CorrectnessChecker] = list(correctness_checkers)
        self.error_log = error_log or ErrorLogBuffer(logs_dir=logs_dir)
        self.progress = ImportProgress(description="Importing", enabled=self.control.progress)
        self.batch_stats = BatchStatsAccumulator()
        self.state = PipelineState.IDLE
        self.last_error: BaseException | None = None
        self.skipped = 0
        self.prepared_rows = 0
        # serializes per-unit middleware calls
        self._lock = threading.Lock()
        self._baselines_collected = False

        if self.control.enable_batch:
            self.middlewares.append(
                BatchWriteMiddleware(self.control.batch_size, metrics_callback=self._on_batch)
            )

    def _on_batch(self, metrics: BatchMetrics) -> None:
        self.batch_stats.add_batch_time(metrics.elapsed_seconds)

    def _expect(self, *states: PipelineState) -> None:
        if self.state not in states:
            allowed = "/".join(s.value for s in states)
            raise ImportPipelineError(f"pipeline is {self.state.value}, expected {allowed}")

    # correctness ----------------------------------------------------------

    def enable_correctness_check(self, *checkers: CorrectnessChecker) -> None:
        """Register checkers and snapshot their baselines now (before importing)."""
        if checkers:
            self.correctness_checkers = list(checkers)
        for checker in self.correctness_checkers:
            checker.pre_collect(self.storage)
        self._baselines_collected = True

    def check_correct(self) -> None:
        for checker in self.correctness_checkers:
            checker.check_correct(self.storage)
        if self.correctness_checkers:
            logger.info(f"correctness check passed ({len(self.correctness_checkers)} checker(s))")

    # finalization ---------------------------------------------------------

    def post_handle(self) -> None:
        """Middleware ``post_handle`` hooks, then the terminal post-handlers."""
        self._expect(PipelineState.IMPORTED)
        try:
            for middleware in self.middlewares:
                middleware.post_handle(self.storage)
            for handler in self.post_handlers:
                handler(self.storage)
        except Exception:
            self.state = PipelineState.FAILED
            raise
        self.state = PipelineState.FINALIZED

    def _run_pre_import(self, ctx: Any) -> None:
        for middleware in self.middlewares:
            middleware.pre_import(self.storage, ctx)

    # run ------------------------------------------------------------------

    def _execute(self, matrix: Sequence[Sequence[Any]]) -> None:
        raise NotImplementedError

    def run(
        self,
        path: Path | str,
        sheet: str | int | None = None,
        keep_na_strings: Sequence[str] | None = None,
    ) -> ImportResult:
        """Read ``path`` and import it. See ``run_matrix``."""
        path = Path(path)
        self.error_log.source = path.name
        start_time = datetime.now(UTC)
        started = time.monotonic()
        try:
            matrix = read_matrix(path, sheet=sheet, keep_na_strings=keep_na_strings)
        except Exception as e:
            self.state = PipelineState.FAILED
            self.last_error = e
            logger.error(f"read {path.name} failed: {e}")
            self.error_log.record_import_error([], str(e), error_type="SOURCE_READ_ERROR")
            return self._finish(start_time, started)
        return self._run(matrix, start_time, started)

    def run_matrix(self, matrix: Sequence[Sequence[Any]]) -> ImportResult:
        """Import an in-memory matrix.

        Never raises for pipeline failures: the result carries ``status`` and
        ``error``, the exception itself is kept in ``last_error``.
        """
        return self._run(matrix, datetime.now(UTC), time.monotonic())

    def _run(self, matrix: Sequence[Sequence[Any]], start_time: datetime, started: float) -> ImportResult:
        self.last_error = None
        try:
            if self.correctness_checkers and not self._baselines_collected:
                self.enable_correctness_check()
            self._execute(matrix)
            if self.correctness_checkers:
                self.check_correct()
        except Exception as e:
            self.state = PipelineState.FAILED
            self.last_error = e
            self._record_failure(e)
        return self._finish(start_time, started)

    def _record_failure(self, error: Exception) -> None:
        # unit failures (and content check failures) are already in the error sink
        if isinstance(error, (RowImportError, ContentCheckError)):
            logger.error(f"{self.kind} failed: {error}")
            return
        logger.error(f"{self.kind} failed: {type(error).__name__}: {error}")
        error_type = _error_type(error)
        self.error_log.record_import_error([], str(error), error_type=error_type)

    def _finish(self, start_time: datetime, started: float) -> ImportResult:
        try:
            self.error_log.flush()
        except OSError as e:
            logger.error(f"error log flush failed: {e}")
        snap = self.progress.report()

        end_time = datetime.now(UTC)
        elapsed = time.monotonic() - started
        throughput = snap.succeeded / elapsed if elapsed > 0 else 0.0
        total_batches, avg_batch, p95_batch = self.batch_stats.get_stats()
        ok = self.last_error is None
        result = ImportResult(
            source=self.error_log.source,
            status=STATUS_OK if ok else STATUS_FAILED,
            stage=self.state.value,
            total_units=snap.total,
            succeeded=snap.succeeded,
            failed=snap.failed,
            skipped=self.skipped,
            rows=self.prepared_rows,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=elapsed,
            throughput_units_per_sec=throughput,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
            error=None if ok else str(self.last_error),
        )
        # log_summary adds the "SUMMARY " label itself
        log_summary(render_summary_line(result).removeprefix("SUMMARY "))
        return result


def _error_type(error: BaseException) -> str:
    """CamelCase exception name -> UPPER_SNAKE error type."""
    name = type(error).__name__
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0 and not name[i - 1].isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)
