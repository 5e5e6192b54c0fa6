"""
Service / facade layer.

This module implements the ingestion rules before and around the database
writes. It is intentionally free of SQL — it calls `EventRepo` for every
database operation. All write paths go through `EventService.ingest` so
there is a single security chokepoint.

Key responsibilities:
- resolve the app and check its secret key
- check every event's `_t` against the app's tables before any write
- coerce each column from the event body or request headers
- run the whole batch in one transaction: all rows or none
"""

import hmac
import logging
from typing import Any, List, Mapping, Sequence

from column_types import SqlValue, coerce, coerce_header
from errors import (
    AppNotFound,
    BadRequest,
    ConversionError,
    Forbidden,
    InternalError,
    TableNotAuthorized,
)
from repo_events import EventRepo
from schema import App, Schema, Table, ValueSource

logger = logging.getLogger(__name__)

TABLE_KEY = "_t"


def convert_row(table: Table, event: Mapping[str, Any], headers: Mapping[str, str]) -> List[SqlValue]:
    """Coerce one event into a row for `table`, in column order.

    Raises:
        ConversionError: for the first column that cannot be converted.
    """

    row = []
    for column in table.columns:
        raw = column.raw_value(event, headers)
        if column.source is ValueSource.HEADER:
            row.append(coerce_header(column.type, column.name, raw, column.required))
        else:
            row.append(coerce(column.type, column.name, raw, column.required))
    return row


class EventService:
    """Authentication + validation + transactional insertion.

    Example usage:
        repo = EventRepo(pool)
        svc = EventService(schema, repo)
        svc.ingest("demo", "s3cret", request.headers, events)
    """

    def __init__(self, schema: Schema, repo: EventRepo):
        self.schema = schema
        self.repo = repo

    def authenticate(self, app_id: str, secret_key: str) -> App:
        """Return the app for `app_id` if `secret_key` matches.

        Raises:
        - `AppNotFound` if no app has this id
        - `Forbidden` if the secret key does not match
        """

        app = self.schema.apps.get(app_id)
        if app is None:
            raise AppNotFound(app_id)
        if not hmac.compare_digest(secret_key.encode("utf-8"), app.secret_key.encode("utf-8")):
            raise Forbidden(f"invalid secret key for app {app_id}")
        return app

    def authorize_tables(self, app: App, events: Sequence[Any]) -> None:
        """Check every event's `_t` before anything is written.

        Raises:
        - `BadRequest` if an event is not an object or `_t` is missing or
          not a string
        - `TableNotAuthorized` if `_t` is not one of the app's tables
        """

        for index, event in enumerate(events):
            table_name = event.get(TABLE_KEY) if isinstance(event, dict) else None
            if not isinstance(table_name, str):
                raise BadRequest(f"event {index}: missing or non-string '{TABLE_KEY}'")
            if table_name not in app.tables:
                raise TableNotAuthorized(app.id, table_name)

    def ingest(
        self,
        app_id: str,
        secret_key: str,
        headers: Mapping[str, str],
        events: Sequence[Any],
    ) -> int:
        """Validate and persist a batch of events for one app.

        Steps:
        1. Resolve the app and check the secret key.
        2. Check `_t` of every event (no database access yet).
        3. In one transaction, convert and insert each event in order.

        Returns the number of inserted rows.

        Raises:
        - `AppNotFound`, `Forbidden`, `TableNotAuthorized`, `BadRequest`
        - `InternalError` if an authorized table is missing from the catalog
        - `DbError` for connection, insert or commit failures
        """

        app = self.authenticate(app_id, secret_key)
        self.authorize_tables(app, events)

        if not events:
            return 0

        with self.repo.transaction() as conn:
            for event in events:
                table_name = event[TABLE_KEY]
                table = self.schema.tables.get(table_name)
                if table is None:
                    raise InternalError(f"table {table_name} is authorized for app {app.id} but not defined")
                try:
                    row = convert_row(table, event, headers)
                except ConversionError as exc:
                    raise BadRequest(f"table {table_name}: {exc}") from exc
                self.repo.insert_row(conn, table, row)

        logger.debug("Inserted %d events for app %s", len(events), app.id)
        return len(events)

    def health_check(self) -> None:
        """Perform a lightweight DB ping via the repository."""

        self.repo.ping()
