from __future__ import annotations

from collections.abc import Iterable

"""Error taxonomy shared by the flat and tree import pipelines.

- StructuralError: the matrix violates a hard precondition (fatal, immediate)
- RowValidationError: raised by section checkers; accumulated, never aborts early
- ContentCheckError: aggregate raised once after the full check scan
- RowImportError: a storage write failed for one unit (row or tree node)
- CorrectnessViolation: post-import invariant mismatch
"""

__all__ = [
    "ImportPipelineError",
    "StructuralError",
    "RowValidationError",
    "ContentCheckError",
    "RowImportError",
    "CorrectnessViolation",
]


class ImportPipelineError(Exception):
    """Base exception for import pipeline errors."""


class StructuralError(ImportPipelineError):
    pass


class RowValidationError(ImportPipelineError, ValueError):
    pass


class ContentCheckError(ImportPipelineError):
    """All rows were checked and at least one failed."""

    def __init__(self, rows: Iterable[int]) -> None:
        self.rows = tuple(rows)
        super().__init__(f"content check failed: {len(self.rows)} invalid row(s)")


class RowImportError(ImportPipelineError):
    """Import of one unit failed. ``rows`` are 1-based source line numbers."""

    def __init__(self, rows: Iterable[int], message: str) -> None:
        self.rows = tuple(rows)
        super().__init__(f"{_format_rows(self.rows)}: {message}")


class CorrectnessViolation(ImportPipelineError):
    pass


def _format_rows(rows: tuple[int, ...]) -> str:
    if not rows:
        return "row ?"
    label = "row" if len(rows) == 1 else "rows"
    return f"{label} " + ", ".join(str(r) for r in rows)
