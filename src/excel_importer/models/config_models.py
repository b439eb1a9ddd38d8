from __future__ import annotations

from dataclasses import dataclass

from ..db.batch_insert import DEFAULT_BATCH_SIZE
from ..excel.preprocess import CellFormatter, RowPredicate, default_row_end
from ..services.tree_builder import ColumnEnd, KeyFunc, default_column_end, last_value_key

"""Per-run configuration objects.

- ImportControl: preprocessing and execution switches shared by both pipelines
- TreeImportConfig: tree shape (level order, boundary, key function)
- DatabaseConfig: connection fallback for the CLI (env vars win)

Every switch is passed to a pipeline constructor; there is no process-wide
feature state.
"""

__all__ = [
    "ImportControl",
    "TreeImportConfig",
    "DatabaseConfig",
]


@dataclass(frozen=True)
class ImportControl:
    start_row: int = 1  # rows before this (0-based) are header
    row_end: RowPredicate | None = default_row_end
    row_filter: RowPredicate | None = None  # True = drop the row
    cell_formatter: CellFormatter | None = None
    min_columns: int = 0  # 0 = derive from the column mapping
    enable_format_check: bool = False
    enable_type_check: bool = False
    strict_materialize: bool = False
    enable_parallel: bool = False
    max_parallel: int = 4
    enable_batch: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    progress: bool = True

    def __post_init__(self) -> None:
        if self.start_row < 0:
            raise ValueError(f"start_row must be >= 0, got {self.start_row}")
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {self.max_parallel}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

    @property
    def parallel(self) -> bool:
        """Parallel import only pays off with more than one worker."""
        return self.enable_parallel and self.max_parallel > 1


@dataclass(frozen=True)
class TreeImportConfig:
    """Tree shape.

    ``level_order[r]`` is the column holding rank ``r + 1``; every entry must
    lie within ``0..tree_boundary``. ``column_count`` pads rows (0 = derive
    from the record mapping and the boundary).
    """
    level_order: tuple[int, ...]
    tree_boundary: int
    column_count: int = 0
    key_func: KeyFunc = last_value_key
    column_end: ColumnEnd = default_column_end

    def __post_init__(self) -> None:
        if not self.level_order:
            raise ValueError("level_order must not be empty")
        for col in self.level_order:
            if col < 0 or col > self.tree_boundary:
                raise ValueError(f"level column {col} outside tree boundary 0..{self.tree_boundary}")
        object.__setattr__(self, "level_order", tuple(self.level_order))

    @classmethod
    def sequential(cls, tree_boundary: int, **kwargs: object) -> TreeImportConfig:
        """Columns 0..tree_boundary are ranks 1..tree_boundary+1."""
        return cls(level_order=tuple(range(tree_boundary + 1)), tree_boundary=tree_boundary, **kwargs)  # type: ignore[arg-type]

    @property
    def depth(self) -> int:
        return len(self.level_order)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
