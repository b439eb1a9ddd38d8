from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

"""Bounded worker pool with first-error cancellation.

- at most ``max_workers`` units run at once; ``submit`` blocks at the
  admission gate until a slot is free
- the first failing unit sets the cancellation flag; units not yet admitted
  are dropped, running units finish on their own
- ``join`` waits for every admitted unit and re-raises the first error
"""

__all__ = [
    "BoundedWorkerPool",
]

logger = logging.getLogger(__name__)


class BoundedWorkerPool:
    def __init__(self, max_workers: int, *, name: str = "import") -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._gate = threading.BoundedSemaphore(max_workers)
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._first_error: BaseException | None = None
        self._futures: list[Future[Any]] = []
        self.admitted = 0
        self.rejected = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def first_error(self) -> BaseException | None:
        with self._lock:
            return self._first_error

    def cancel(self, error: BaseException | None = None) -> None:
        with self._lock:
            if error is not None and self._first_error is None:
                self._first_error = error
        self._cancelled.set()

    def submit(self, fn: Callable[..., Any], *args: Any) -> bool:
        """Admit one unit. Returns False if the pool was cancelled before admission."""
        if self._cancelled.is_set():
            self.rejected += 1
            return False
        self._gate.acquire()
        if self._cancelled.is_set():
            self._gate.release()
            self.rejected += 1
            return False
        self.admitted += 1
        self._futures.append(self._executor.submit(self._run, fn, *args))
        return True

    def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except BaseException as e:
            self.cancel(e)
            raise
        finally:
            self._gate.release()

    def join(self) -> None:
        """Barrier: wait for all admitted units, then raise the first error (if any)."""
        try:
            for fut in self._futures:
                # exception() waits without raising; run() already recorded the error via cancel()
                fut.exception()
        finally:
            self._executor.shutdown(wait=True)
            self._futures.clear()
        if self.rejected:
            logger.debug(f"{self.rejected} unit(s) not admitted after cancellation")
        error = self.first_error
        if error is not None:
            raise error

    def __enter__(self) -> BoundedWorkerPool:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None:
            self._cancelled.set()
            self._executor.shutdown(wait=True)
