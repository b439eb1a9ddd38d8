"""Spreadsheet to database import pipelines.

``FlatImportPipeline`` imports sources whose rows are independent records;
``TreeImportPipeline`` imports sources whose leading columns describe a
hierarchy. Both share preprocessing, checks, middleware, progress reporting,
the error sink and post-import correctness checks.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
