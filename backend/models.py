"""
Pydantic models used across the backend.

Only input shapes belong here: the body of an events POST and the raw
shape of the schema configuration document. These models check structure
and types at the boundary; cross-references (app -> table, unique names)
are checked by `schema.build_schema`.

Guidelines:
- Keep models minimal and stable. The runtime catalog lives in
    `schema.py` as frozen dataclasses, not as these models.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from column_types import ColumnType


class EventBatchIn(BaseModel):
        """Body of `POST /apps/{app_id}/events`.

        Fields:
        - `secret_key`: shared secret of the app.
        - `events`: raw event objects. Each must carry a string `_t` naming
          its table; the service checks that, not this model.
        """

        secret_key: str
        events: List[Any] = Field(default_factory=list)


class ColumnConfig(BaseModel):
    """One column of a table. `header` marks a header-sourced column."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    type: ColumnType = ColumnType.STRING
    required: bool = False
    header: Optional[str] = Field(default=None, min_length=1)


class TableConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    columns: List[ColumnConfig] = Field(default_factory=list)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    secret_key: str
    allowed_origin: str = "*"
    tables: List[str] = Field(default_factory=list)


class SchemaConfig(BaseModel):
    """Top-level configuration document."""

    model_config = ConfigDict(extra="forbid")

    apps: List[AppConfig] = Field(default_factory=list)
    tables: List[TableConfig] = Field(default_factory=list)
