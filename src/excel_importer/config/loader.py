from __future__ import annotations

import importlib
import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import DatabaseConfig, ImportControl, TreeImportConfig
from ..services.tree_builder import KEY_FUNCS

"""Run configuration loader.

Responsibilities:
- Load the YAML run file
- Validate it against the bundled JSON schema (config_schema.json)
- Build the runtime objects (ImportControl / TreeImportConfig)
- Resolve the ``module:function`` pipeline factory
"""

__all__ = [
    "SCHEMA_PATH",
    "ConfigError",
    "ImportConfig",
    "load_config",
    "resolve_factory",
    "resolve_dsn",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class ImportConfig:
    source: str
    pipeline: str  # "package.module:function"
    sheet: str | int | None = None
    logs_dir: str = "logs"
    keep_na_strings: tuple[str, ...] = ()
    control: Mapping[str, Any] = field(default_factory=dict)
    tree: Mapping[str, Any] | None = None
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    options: Mapping[str, Any] = field(default_factory=dict)  # free-form, read by the factory

    @property
    def source_path(self) -> Path:
        return Path(self.source)

    def build_control(self) -> ImportControl:
        try:
            return ImportControl(**self.control)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid control section: {e}") from e

    def build_tree_config(self) -> TreeImportConfig | None:
        if self.tree is None:
            return None
        raw = dict(self.tree)
        key_name = raw.pop("key_func", "last_value")
        boundary = raw["tree_boundary"]
        level_order = raw.pop("level_order", None)
        if level_order is None:
            level_order = list(range(boundary + 1))
        try:
            return TreeImportConfig(
                level_order=tuple(level_order),
                tree_boundary=boundary,
                column_count=raw.get("column_count", 0),
                key_func=KEY_FUNCS[key_name],
            )
        except ValueError as e:
            raise ConfigError(f"invalid tree section: {e}") from e


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails schema validation (missing required keys,
            wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        prefix = f"{location}: " if location else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    cfg = ImportConfig(
        source=data["source"],
        pipeline=data["pipeline"],
        sheet=data.get("sheet"),
        logs_dir=data.get("logs_dir", "logs"),
        keep_na_strings=tuple(data.get("keep_na_strings") or ()),
        control=dict(data.get("control") or {}),
        tree=dict(data["tree"]) if data.get("tree") is not None else None,
        database=db,
        options=dict(data.get("options") or {}),
    )
    # surface bad values at load time rather than mid-run
    cfg.build_control()
    cfg.build_tree_config()
    return cfg


def resolve_factory(spec: str) -> Callable[..., Any]:
    """Import ``package.module:function``."""
    module_name, _, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"pipeline module not importable: {module_name} ({e})") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"pipeline factory not found: {spec}")
    return factory


def resolve_dsn(db: DatabaseConfig) -> str:
    """Connection string; environment variables win over the config file.

    1. DATABASE_URL / PGDSN (whole DSN)
    2. database.dsn
    3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, falling back to
       the individual database.* keys
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db.host or "localhost")
    port = os.getenv("PGPORT", str(db.port) if db.port else "5432")
    user = os.getenv("PGUSER", db.user or "postgres")
    password = os.getenv("PGPASSWORD", db.password or "")
    database = os.getenv("PGDATABASE", db.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn
