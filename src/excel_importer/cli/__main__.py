from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from excel_importer.config.loader import ConfigError, load_config, resolve_dsn, resolve_factory
from excel_importer.db.storage import connect_postgres
from excel_importer.excel.model_gen import render_model
from excel_importer.excel.preprocess import default_row_end, preprocess_matrix
from excel_importer.excel.reader import read_matrix
from excel_importer.logging.init import setup_logging

"""CLI entrypoint: ``python -m excel_importer.cli <command>``.

Commands:
- inspect PATH                 preview the preprocessed rows of a sheet
- gen-model PATH --name NAME   print a record dataclass skeleton for a sheet
- run --config FILE            import one source with the configured pipeline

Exit codes: 0 ok, 1 fatal (config / source / connection), 2 import failed.
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

DEFAULT_CONFIG = Path("config/import.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True lets .env values replace existing environment variables so
    the PostgreSQL connection settings in .env always win.
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _sheet_arg(value: str) -> str | int:
    return int(value) if value.isdigit() else value


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="excel_importer", description="Excel -> database importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    inspect = sub.add_parser("inspect", help="Print the preprocessed rows of a sheet")
    inspect.add_argument("path", type=Path)
    inspect.add_argument("--sheet", type=_sheet_arg, default=None)
    inspect.add_argument("--start-row", type=int, default=1, help="First data row (0-based)")
    inspect.add_argument("--limit", type=int, default=10, help="Rows to print (0 = all)")

    gen = sub.add_parser("gen-model", help="Print a record dataclass skeleton")
    gen.add_argument("path", type=Path)
    gen.add_argument("--name", required=True, help="Class name")
    gen.add_argument("--table", default=None, help="__tablename__ of the generated class")
    gen.add_argument("--sheet", type=_sheet_arg, default=None)
    gen.add_argument("--header-row", type=int, default=0, help="Header row (0-based)")

    run = sub.add_parser("run", help="Import one source")
    run.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    return p.parse_args(argv)


def _inspect(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        matrix = read_matrix(args.path, sheet=args.sheet)
    except Exception as e:
        logger.error(f"inspect: {e}")
        return EXIT_FATAL
    prepared = preprocess_matrix(matrix, start_row=args.start_row, row_end=default_row_end)
    print(f"FILE: {args.path.name} rows={len(prepared)}")
    shown = prepared.rows if args.limit <= 0 else prepared.rows[: args.limit]
    for i, row in enumerate(shown):
        print(f"  line {prepared.line_number(i)}: {row}")
    return EXIT_SUCCESS_ALL


def _gen_model(args: argparse.Namespace, logger: logging.Logger) -> int:
    if not args.name.isidentifier():
        logger.error(f"gen-model: invalid class name {args.name!r}")
        return EXIT_FATAL
    try:
        matrix = read_matrix(args.path, sheet=args.sheet)
    except Exception as e:
        logger.error(f"gen-model: {e}")
        return EXIT_FATAL
    if len(matrix) <= args.header_row:
        logger.error(f"gen-model: no header row {args.header_row} in {args.path.name}")
        return EXIT_FATAL
    header = matrix[args.header_row]
    prepared = preprocess_matrix(matrix, start_row=args.header_row + 1, min_columns=len(header))
    print(render_model(args.name, header, prepared.rows, table=args.table), end="")
    return EXIT_SUCCESS_ALL


def _run(args: argparse.Namespace, logger: logging.Logger) -> int:
    # .env first so it takes priority for the connection parameters
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
        factory = resolve_factory(cfg.pipeline)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        conn, storage = connect_postgres(resolve_dsn(cfg.database))
    except Exception as e:
        logger.error(f"database connection failed: {e}")
        return EXIT_FATAL

    try:
        pipeline = factory(storage, cfg)
        logger.info(f"Processing {cfg.source}")
        result = pipeline.run(cfg.source_path, sheet=cfg.sheet, keep_na_strings=cfg.keep_na_strings or None)
        if result.ok:
            conn.commit()
            return EXIT_SUCCESS_ALL
        conn.rollback()
        logger.error(f"rolled back: {result.error}")
        return EXIT_PARTIAL_FAILURE
    except Exception as e:
        conn.rollback()
        logger.error(f"pipeline setup failed: {type(e).__name__}: {e}")
        return EXIT_FATAL
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # only read the process arguments when none are given (tests pass [])
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    if args.debug:
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    if args.command == "inspect":
        return _inspect(args, logger)
    if args.command == "gen-model":
        return _gen_model(args, logger)
    return _run(args, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
