from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from ..db.storage import StorageHandle
from ..errors import ContentCheckError, RowImportError
from ..excel.preprocess import preprocess_matrix
from ..models.column_mapping import ColumnMapping, ColumnResolver, resolve_column_mapping
from ..models.config_models import TreeImportConfig
from ..models.record import materialize, validate_row_types
from ..models.tree_node import TreeImportContext, TreeNode
from .format_checks import TagFormatChecker
from .pipeline_base import BasePipeline, PipelineState, PostHandler
from .tree_builder import attach_records, build_tree
from .worker_pool import BoundedWorkerPool

"""Tree import pipeline: rows describe a hierarchy, imported level by level.

The root is imported first, then every node of rank 1, then rank 2, and so
on; no node of rank r+1 starts before all of rank r is done, so a child can
always read ``node.parent_id``. Within one rank nodes may run in parallel.
A failing node aborts the whole import and reports all of its source lines.
"""

__all__ = [
    "LevelImporter",
    "TreePreHandler",
    "TreeImportPipeline",
]

logger = logging.getLogger(__name__)

LevelImporter = Callable[[StorageHandle, TreeNode], None]
TreePreHandler = Callable[[StorageHandle, TreeImportContext], None]


class TreeImportPipeline(BasePipeline):
    kind = "tree import"

    def __init__(
        self,
        storage: StorageHandle,
        config: TreeImportConfig,
        root_importer: LevelImporter | None,
        level_importers: Sequence[LevelImporter | None],
        *,
        record_type: type | None = None,
        resolver: ColumnResolver = resolve_column_mapping,
        format_checker: TagFormatChecker | None = None,
        pre_handler: TreePreHandler | None = None,
        post_handlers: Iterable[PostHandler] = (),
        **kwargs: Any,
    ) -> None:
        if len(level_importers) != len(config.level_order):
            raise ValueError(
                f"{len(level_importers)} level importer(s) for {len(config.level_order)} level(s)"
            )
        super().__init__(storage, post_handlers=post_handlers, **kwargs)
        self.config = config
        self.root_importer = root_importer
        self.level_importers = list(level_importers)
        self.record_type = record_type
        self.resolver = resolver
        self.format_checker = format_checker or TagFormatChecker()
        self.pre_handler = pre_handler
        self.mapping: ColumnMapping | None = None

    @classmethod
    def strict_order(
        cls,
        storage: StorageHandle,
        tree_boundary: int,
        importer: LevelImporter,
        *,
        column_count: int = 0,
        **kwargs: Any,
    ) -> TreeImportPipeline:
        """Columns 0..tree_boundary are the levels; one importer for the root and every rank."""
        config = TreeImportConfig.sequential(tree_boundary, column_count=column_count)
        return cls(storage, config, importer, [importer] * config.depth, **kwargs)

    # parse ----------------------------------------------------------------

    def parse(self, matrix: Sequence[Sequence[Any]]) -> TreeImportContext:
        """Preprocess, build the tree, materialize and attach leaf records."""
        try:
            return self._parse(matrix)
        except Exception:
            self.state = PipelineState.FAILED
            raise

    def _min_columns(self) -> int:
        if self.control.min_columns:
            return self.control.min_columns
        if self.config.column_count:
            return self.config.column_count
        width = self.config.tree_boundary + 1
        if self.mapping is not None:
            width = max(width, self.mapping.min_column_count)
        return width

    def _parse(self, matrix: Sequence[Sequence[Any]]) -> TreeImportContext:
        control = self.control
        if self.record_type is not None and self.mapping is None:
            self.mapping = self.resolver(self.record_type)

        prepared = preprocess_matrix(
            matrix,
            start_row=control.start_row,
            row_end=control.row_end,
            row_filter=control.row_filter,
            min_columns=self._min_columns(),
            cell_formatter=control.cell_formatter,
        )
        self.prepared_rows = len(prepared)

        root, nodes = build_tree(
            prepared.rows,
            self.config.level_order,
            self.config.tree_boundary,
            source_rows=prepared.source_rows,
            key_func=self.config.key_func,
            column_end=self.config.column_end,
        )

        records: list[Any] = []
        if self.mapping is not None:
            records = [materialize(self.mapping, cells, strict=control.strict_materialize) for cells in prepared.rows]
            attach_records(root, dict(zip(prepared.source_rows, records, strict=True)))

        ctx = TreeImportContext(
            root=root,
            nodes=nodes,
            rows=prepared.rows,
            source_rows=prepared.source_rows,
            records=records,
            mapping=self.mapping,
        )
        self.state = PipelineState.PARSED
        logger.info(f"built tree: {ctx.node_count - 1} node(s), {ctx.leaf_count} leaf node(s) from {len(prepared)} row(s)")
        return ctx

    # check ----------------------------------------------------------------

    def check(self, ctx: TreeImportContext) -> None:
        """Format / type checks of the source rows (when enabled)."""
        self._expect(PipelineState.PARSED)
        failed: list[int] = []
        mapping = ctx.mapping
        if mapping is not None and (self.control.enable_format_check or self.control.enable_type_check):
            for cells, src in zip(ctx.rows, ctx.source_rows, strict=True):
                problems: list[str] = []
                if self.control.enable_format_check:
                    problems.extend(self.format_checker.check_cells(cells, mapping))
                if self.control.enable_type_check:
                    problems.extend(validate_row_types(mapping, cells))
                if problems:
                    message = "; ".join(problems)
                    logger.warning(f"line {src + 1} check failed: {message}")
                    self.error_log.record_check_error([src + 1], message)
                    failed.append(src + 1)
        if failed:
            self.state = PipelineState.FAILED
            raise ContentCheckError(failed)
        self.state = PipelineState.CHECKED

    # import ---------------------------------------------------------------

    def _import_node(self, importer: LevelImporter | None, node: TreeNode) -> None:
        if importer is None:
            self.progress.commit(success=True)
            return
        try:
            importer(self.storage, node)
            with self._lock:
                for middleware in self.middlewares:
                    middleware.post_node_import(self.storage, node)
        except Exception as e:
            self.progress.commit(success=False)
            lines = node.line_numbers
            logger.error(f"import node {node.value!r} (rank {node.rank}) failed: {e}")
            self.error_log.record_import_error(lines, str(e))
            raise RowImportError(lines, str(e)) from e
        self.progress.commit(success=True)

    def _import_rank(self, importer: LevelImporter | None, nodes: list[TreeNode]) -> None:
        if not self.control.parallel or len(nodes) < 2:
            for node in nodes:
                self._import_node(importer, node)
            return
        pool = BoundedWorkerPool(self.control.max_parallel, name="node-import")
        for node in nodes:
            if not pool.submit(self._import_node, importer, node):
                logger.warning("import cancelled after a failure; remaining nodes not admitted")
                break
        # rank barrier
        pool.join()

    def import_tree(self, ctx: TreeImportContext) -> None:
        self._expect(PipelineState.CHECKED)
        try:
            if self.pre_handler is not None:
                self.pre_handler(self.storage, ctx)
            self._run_pre_import(ctx)
            self.progress.start(ctx.node_count)

            self._import_node(self.root_importer, ctx.root)
            nodes = list(ctx.root.children)
            for rank, importer in enumerate(self.level_importers, start=1):
                if not nodes:
                    break
                self._import_rank(importer, nodes)
                logger.debug(f"rank {rank}: {len(nodes)} node(s) imported")
                nodes = [child for node in nodes for child in node.children]
        except Exception:
            self.state = PipelineState.FAILED
            raise
        self.state = PipelineState.IMPORTED

    # run ------------------------------------------------------------------

    def _execute(self, matrix: Sequence[Sequence[Any]]) -> None:
        ctx = self.parse(matrix)
        self.check(ctx)
        self.import_tree(ctx)
        self.post_handle()
