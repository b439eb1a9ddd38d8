"""Domain models for the import pipelines.

Configuration objects live in ``models.config_models`` and are imported from
there directly (they depend on the preprocessing and tree-key helpers).
"""

from .column_mapping import ColumnMapping, FieldSpec, column, resolve_column_mapping
from .error_record import ErrorRecord
from .processing_result import ImportResult
from .row_context import ImportEffect, RowContext, SectionType, WholeImportContext
from .tree_node import TreeImportContext, TreeNode, TreeNodeItem

__all__ = [
    # Column mapping
    "ColumnMapping",
    "FieldSpec",
    "column",
    "resolve_column_mapping",
    # Flat pipeline context
    "SectionType",
    "ImportEffect",
    "RowContext",
    "WholeImportContext",
    # Tree pipeline context
    "TreeNode",
    "TreeNodeItem",
    "TreeImportContext",
    # Reporting
    "ErrorRecord",
    "ImportResult",
]
