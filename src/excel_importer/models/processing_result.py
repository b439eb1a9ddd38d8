from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime

"""Run result models.

``ImportResult`` is returned by ``FlatImportPipeline.run`` /
``TreeImportPipeline.run`` and rendered as the SUMMARY line. A unit is a row
(flat) or a tree node (tree).
"""

__all__ = [
    "ImportResult",
    "BatchStatsAccumulator",
    "STATUS_OK",
    "STATUS_FAILED",
]

STATUS_OK = "ok"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ImportResult:
    """Aggregated counters and timings of one pipeline run."""
    source: str  # file name, or "<matrix>"
    status: str  # ok / failed
    stage: str  # last pipeline state reached (FINALIZED on success)
    total_units: int
    succeeded: int
    failed: int
    skipped: int  # rows without an importer
    rows: int  # prepared source rows
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    throughput_units_per_sec: float
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


class BatchStatsAccumulator:
    """Collects batch timings (``BatchMetrics.elapsed_seconds``) for the result."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
