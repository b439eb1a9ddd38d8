from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Import progress tracking with tqdm (TTY only).

Counters (total / completed / succeeded / failed) are shared by every import
unit and guarded by a single lock. The tqdm bar is only created when stdout is
a TTY so that CI logs are not spammed with control sequences; the final report
always goes through the application logger.
"""

__all__ = [
    "ImportProgress",
    "ProgressSnapshot",
    "is_tty_enabled",
]

logger = logging.getLogger(__name__)


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and a progress bar should be displayed."""
    return sys.stdout.isatty()


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    completed: int
    succeeded: int
    failed: int
    elapsed_seconds: float


class ImportProgress:
    """Thread-safe progress counters for one pipeline run."""

    def __init__(self, *, description: str = "Importing", enabled: bool = True) -> None:
        self.description = description
        self.enabled = enabled and is_tty_enabled()
        self.total = 0
        self.completed = 0
        self.succeeded = 0
        self.failed = 0
        self._start = time.monotonic()
        self._lock = threading.Lock()
        self.pbar: TqdmType[Any] | None = None

    def start(self, total: int) -> None:
        """Reset the counters for ``total`` units."""
        with self._lock:
            self.total = total
            self.completed = 0
            self.succeeded = 0
            self.failed = 0
            self._start = time.monotonic()
            if self.enabled:
                if self.pbar is not None:
                    self.pbar.close()
                self.pbar = tqdm(
                    total=total,
                    desc=self.description,
                    unit="unit",
                    leave=True,
                    ncols=80,
                    ascii=True,
                )

    def commit(self, success: bool = True, n: int = 1) -> None:
        with self._lock:
            self.completed += n
            if success:
                self.succeeded += n
            else:
                self.failed += n
            if self.pbar is not None:
                self.pbar.update(n)
                self.pbar.set_postfix(ok=self.succeeded, failed=self.failed)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                total=self.total,
                completed=self.completed,
                succeeded=self.succeeded,
                failed=self.failed,
                elapsed_seconds=time.monotonic() - self._start,
            )

    def report(self) -> ProgressSnapshot:
        """Close the bar and log the final counters."""
        snap = self.snapshot()
        self.close()
        logger.info(
            f"{self.description}: {snap.completed}/{snap.total} "
            f"succeeded={snap.succeeded} failed={snap.failed} cost={snap.elapsed_seconds:.3f}s"
        )
        return snap

    def close(self) -> None:
        with self._lock:
            if self.pbar is not None:
                self.pbar.close()
                self.pbar = None

    def __enter__(self) -> ImportProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
