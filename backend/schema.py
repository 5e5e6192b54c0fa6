"""
In-memory schema: apps, tables and columns.

The schema is built once at startup from the YAML configuration document
and then shared, read-only, by every request. All containers are immutable
(frozen dataclasses, `frozenset`, `MappingProxyType`), so request threads
can read it without locking.

Construction is all-or-nothing: `build_schema` either returns a complete
`Schema` or raises `ConfigError` listing every problem it found.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from column_types import ColumnType
from errors import ConfigError
from models import SchemaConfig

logger = logging.getLogger(__name__)


class ValueSource(Enum):
    """Where a column's raw value comes from."""

    EVENT = "event"
    HEADER = "header"


@dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType
    required: bool
    source: ValueSource = ValueSource.EVENT
    header: Optional[str] = None

    def raw_value(self, event: Mapping[str, Any], headers: Mapping[str, str]) -> Any:
        """Look up this column's untyped value, or None if it is missing.

        Event columns read the event body by column name. Header columns
        read the header map by header name; pass a case-insensitive mapping
        (such as Starlette's `Headers`) for case-insensitive lookup.
        """
        if self.source is ValueSource.HEADER:
            return headers.get(self.header)
        return event.get(self.name)


@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[Column, ...]


@dataclass(frozen=True)
class App:
    id: str
    secret_key: str
    allowed_origin: str
    tables: frozenset

    def __repr__(self) -> str:
        return f"App(id={self.id!r}, allowed_origin={self.allowed_origin!r}, tables={sorted(self.tables)!r})"


@dataclass(frozen=True)
class Schema:
    apps: Mapping[str, App]
    tables: Mapping[str, Table]


def _duplicates(names: List[str]) -> List[str]:
    seen = set()
    dupes = []
    for name in names:
        if name in seen and name not in dupes:
            dupes.append(name)
        seen.add(name)
    return dupes


def _format_validation_error(exc: ValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        errors.append(f"{location}: {err['msg']}")
    return errors


def build_schema(document: Any) -> Schema:
    """Build a `Schema` from a parsed configuration document.

    Args:
        document: The decoded YAML/JSON mapping with `apps` and `tables`.

    Returns:
        The immutable schema.

    Raises:
        ConfigError: if the document is malformed or inconsistent.
    """
    if document is None:
        document = {}
    try:
        config = SchemaConfig.model_validate(document)
    except ValidationError as exc:
        raise ConfigError("invalid schema: " + "; ".join(_format_validation_error(exc))) from exc

    errors: List[str] = []

    for name in _duplicates([t.name for t in config.tables]):
        errors.append(f"table '{name}' is defined more than once")
    for app_id in _duplicates([a.id for a in config.apps]):
        errors.append(f"app '{app_id}' is defined more than once")

    tables: Dict[str, Table] = {}
    for table_config in config.tables:
        for column in _duplicates([c.name for c in table_config.columns]):
            errors.append(f"table '{table_config.name}': column '{column}' is defined more than once")
        columns = tuple(
            Column(
                name=c.name,
                type=c.type,
                required=c.required,
                source=ValueSource.HEADER if c.header else ValueSource.EVENT,
                header=c.header,
            )
            for c in table_config.columns
        )
        tables[table_config.name] = Table(name=table_config.name, columns=columns)

    apps: Dict[str, App] = {}
    for app_config in config.apps:
        for table_name in app_config.tables:
            if table_name not in tables:
                errors.append(f"app '{app_config.id}': table '{table_name}' is not defined")
        apps[app_config.id] = App(
            id=app_config.id,
            secret_key=app_config.secret_key,
            allowed_origin=app_config.allowed_origin,
            tables=frozenset(app_config.tables),
        )

    if errors:
        raise ConfigError("invalid schema: " + "; ".join(errors))

    return Schema(apps=MappingProxyType(apps), tables=MappingProxyType(tables))


def load_schema(path) -> Schema:
    """Read a YAML schema file and build the schema from it."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read schema file {path}: {exc}") from exc
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse schema file {path}: {exc}") from exc

    schema = build_schema(document)
    logger.info("Loaded schema from %s: %d apps, %d tables", path, len(schema.apps), len(schema.tables))
    return schema
