from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError as SchemaValidationError

from ..models.template import Template
from ..tabular.parser import MAX_UPLOAD_BYTES

"""Config loader.

Responsibilities:
- Load YAML config/import.yml
- Validate it against the packaged JSON schema (import_schema.json)
- Apply defaults (data_row_offset=3, page_size=10, store_batch_size=30, ...)
- Build the immutable Template objects offered for selection
"""

SCHEMA_PATH = Path(__file__).with_name("import_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback. Environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    templates: dict[str, Template]  # collection -> template (宣言順)
    data_row_offset: int = 3
    page_size: int = 10
    store_batch_size: int = 30
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    delimiter: str = ","
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def default_template(self) -> Template:
        return next(iter(self.templates.values()))

    def template(self, collection: str | None = None) -> Template:
        """Template for ``collection``; the first declared template when None."""
        if collection is None:
            return self.default_template
        try:
            return self.templates[collection]
        except KeyError:
            known = ", ".join(self.templates) or "<none>"
            raise ConfigError(f"unknown template collection: {collection} (known: {known})") from None


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or invalid, or the config
            data fails validation (missing keys, wrong types, extra keys)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except SchemaValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _build_template(raw: dict[str, Any]) -> Template:
    required = tuple(raw["required_fields"])
    date_fields = frozenset(raw.get("date_fields") or [])
    mapping = dict(raw.get("field_mapping") or {})
    if not mapping:
        # field_mapping 省略時: 必須列 + 日付列 を skeleton 列とする
        mapping = {f: f for f in [*required, *sorted(date_fields - set(required))]}
    return Template(
        name=raw["name"],
        collection=raw["collection"],
        required_fields=required,
        date_fields=date_fields,
        field_descriptions=dict(raw.get("field_descriptions") or {}),
        field_mapping=mapping,
        description=raw.get("description", ""),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)

    templates: dict[str, Template] = {}
    for raw in data["templates"]:
        tpl = _build_template(raw)
        if tpl.collection in templates:
            raise ConfigError(f"duplicate template collection: {tpl.collection}")
        templates[tpl.collection] = tpl

    db_raw = data.get("database") or {}
    return ImportConfig(
        templates=templates,
        data_row_offset=data.get("data_row_offset", 3),
        page_size=data.get("page_size", 10),
        store_batch_size=data.get("store_batch_size", 30),
        max_upload_bytes=data.get("max_upload_bytes", MAX_UPLOAD_BYTES),
        delimiter=data.get("delimiter", ","),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
    )
