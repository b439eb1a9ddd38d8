from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from ..db.storage import StorageHandle
from ..errors import ContentCheckError, RowImportError
from ..excel.preprocess import preprocess_matrix
from ..models.column_mapping import ColumnMapping, ColumnResolver, resolve_column_mapping
from ..models.record import materialize, validate_row_types
from ..models.row_context import RowContext, SectionType, WholeImportContext
from .format_checks import TagFormatChecker
from .pipeline_base import BasePipeline, PipelineState, PostHandler
from .worker_pool import BoundedWorkerPool

"""Flat import pipeline: every row is classified into a section and imported on its own.

State machine: IDLE -> PARSED -> CHECKED -> IMPORTED -> FINALIZED (FAILED on error)

- parse: preprocess, classify (recognizer), materialize records
- check: format / type / section checks on every row; one error-sink entry
  per failing row, then a single ContentCheckError
- import_rows: importer per section, serial or bounded-parallel; per-row
  middleware after each success
"""

__all__ = [
    "SectionRecognizer",
    "SectionChecker",
    "SectionImporter",
    "ONE_SECTION",
    "FlatImportPipeline",
]

logger = logging.getLogger(__name__)

SectionRecognizer = Callable[[Sequence[str]], SectionType]
# raises ValueError (RowValidationError) for an invalid row
SectionChecker = Callable[[RowContext], None]
SectionImporter = Callable[[StorageHandle, RowContext], None]

ONE_SECTION: SectionType = "one_section"


class FlatImportPipeline(BasePipeline):
    kind = "flat import"

    def __init__(
        self,
        storage: StorageHandle,
        importers: Mapping[SectionType, SectionImporter],
        recognizer: SectionRecognizer,
        *,
        record_type: type | None = None,
        checkers: Mapping[SectionType, SectionChecker] | None = None,
        resolver: ColumnResolver = resolve_column_mapping,
        format_checker: TagFormatChecker | None = None,
        post_handlers: Iterable[PostHandler] = (),
        **kwargs: Any,
    ) -> None:
        super().__init__(storage, post_handlers=post_handlers, **kwargs)
        self.importers = dict(importers)
        self.recognizer = recognizer
        self.record_type = record_type
        self.checkers = dict(checkers or {})
        self.resolver = resolver
        self.format_checker = format_checker or TagFormatChecker()
        self.mapping: ColumnMapping | None = None

    @classmethod
    def one_section(
        cls,
        storage: StorageHandle,
        importer: SectionImporter,
        *,
        checker: SectionChecker | None = None,
        **kwargs: Any,
    ) -> FlatImportPipeline:
        """Pipeline for sources whose rows are all of one kind."""
        checkers = {ONE_SECTION: checker} if checker is not None else None
        return cls(
            storage,
            {ONE_SECTION: importer},
            lambda cells: ONE_SECTION,
            checkers=checkers,
            **kwargs,
        )

    # parse ----------------------------------------------------------------

    def parse(self, matrix: Sequence[Sequence[Any]]) -> WholeImportContext:
        """Preprocess, classify and materialize. Raises StructuralError only."""
        try:
            return self._parse(matrix)
        except Exception:
            self.state = PipelineState.FAILED
            raise

    def _parse(self, matrix: Sequence[Sequence[Any]]) -> WholeImportContext:
        control = self.control
        if self.record_type is not None and self.mapping is None:
            self.mapping = self.resolver(self.record_type)
        min_columns = control.min_columns
        if min_columns == 0 and self.mapping is not None:
            min_columns = self.mapping.min_column_count

        prepared = preprocess_matrix(
            matrix,
            start_row=control.start_row,
            row_end=control.row_end,
            row_filter=control.row_filter,
            min_columns=min_columns,
            cell_formatter=control.cell_formatter,
        )
        self.prepared_rows = len(prepared)

        whole = WholeImportContext(mapping=self.mapping)
        for i, cells in enumerate(prepared.rows):
            record = None
            if self.mapping is not None:
                record = materialize(self.mapping, cells, strict=control.strict_materialize)
            whole.rows.append(
                RowContext(
                    row=prepared.source_rows[i],
                    section=self.recognizer(cells),
                    cells=cells,
                    record=record,
                    whole=whole,
                )
            )
        self.state = PipelineState.PARSED
        logger.info(f"parsed {len(whole)} row(s)")
        return whole

    # check ----------------------------------------------------------------

    def _row_problems(self, rc: RowContext) -> list[str]:
        problems: list[str] = []
        mapping = rc.mapping
        if mapping is not None and self.control.enable_format_check:
            problems.extend(self.format_checker.check_cells(rc.cells, mapping))
        if mapping is not None and self.control.enable_type_check:
            problems.extend(validate_row_types(mapping, rc.cells))
        checker = self.checkers.get(rc.section)
        if checker is not None:
            try:
                checker(rc)
            except ValueError as e:
                problems.append(str(e))
        return problems

    def check(self, whole: WholeImportContext) -> None:
        """Check every row; raise ContentCheckError after the scan if any failed."""
        self._expect(PipelineState.PARSED)
        failed: list[int] = []
        for rc in whole.rows:
            problems = self._row_problems(rc)
            if not problems:
                continue
            message = "; ".join(problems)
            logger.warning(f"line {rc.line_number} check failed: {message}")
            self.error_log.record_check_error([rc.line_number], message)
            failed.append(rc.line_number)

        if failed:
            self.state = PipelineState.FAILED
            raise ContentCheckError(failed)
        self.state = PipelineState.CHECKED

    # import ---------------------------------------------------------------

    def _import_unit(self, importer: SectionImporter, rc: RowContext) -> None:
        try:
            importer(self.storage, rc)
            with self._lock:
                for middleware in self.middlewares:
                    middleware.post_row_import(self.storage, rc)
        except Exception as e:
            self.progress.commit(success=False)
            logger.error(f"import line {rc.line_number} ({rc.section}) failed: {e}")
            self.error_log.record_import_error([rc.line_number], str(e))
            raise RowImportError([rc.line_number], str(e)) from e
        self.progress.commit(success=True)

    def import_rows(self, whole: WholeImportContext) -> None:
        self._expect(PipelineState.CHECKED)
        units: list[tuple[SectionImporter, RowContext]] = []
        self.skipped = 0
        for rc in whole.rows:
            importer = self.importers.get(rc.section)
            if importer is None:
                logger.warning(f"no importer for section {rc.section!r}, line {rc.line_number} skipped")
                self.skipped += 1
                continue
            units.append((importer, rc))

        try:
            self._run_pre_import(whole)
            self.progress.start(len(units))
            if self.control.parallel:
                self._import_parallel(units)
            else:
                for importer, rc in units:
                    self._import_unit(importer, rc)
        except Exception:
            self.state = PipelineState.FAILED
            raise
        self.state = PipelineState.IMPORTED

    def _import_parallel(self, units: list[tuple[SectionImporter, RowContext]]) -> None:
        pool = BoundedWorkerPool(self.control.max_parallel, name="row-import")
        for importer, rc in units:
            if not pool.submit(self._import_unit, importer, rc):
                logger.warning("import cancelled after a failure; remaining rows not admitted")
                break
        pool.join()

    # run ------------------------------------------------------------------

    def _execute(self, matrix: Sequence[Sequence[Any]]) -> None:
        whole = self.parse(matrix)
        self.check(whole)
        self.import_rows(whole)
        self.post_handle()
