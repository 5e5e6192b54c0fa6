"""
Repository: SQL operations for schema-declared event tables.

This file contains only DB interaction code: creating the tables the
schema declares and inserting already-coerced rows. Keep business rules
(authentication, `_t` checks, coercion) out of this module.

Important notes:
- Statements are composed with `psycopg.sql`, so table and column names
  are quoted identifiers and values are always bound parameters.
- `transaction()` holds one pooled connection and one transaction;
  leaving the block normally commits, leaving it with an exception rolls
  back and re-raises.
- psycopg errors are re-raised as `DbError`.
"""

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, List, Sequence, Tuple

import psycopg
from psycopg import sql

from column_types import SqlValue
from errors import DbError
from schema import Schema, Table

logger = logging.getLogger(__name__)


def column_definitions(table: Table) -> List[Tuple[str, str]]:
    """(column name, physical SQL type) pairs in declaration order."""
    return [(c.name, c.type.sql_type) for c in table.columns]


@lru_cache(maxsize=None)
def create_table_statement(table: Table) -> sql.Composed:
    columns = sql.SQL(", ").join(
        sql.SQL("{} {}").format(sql.Identifier(name), sql.SQL(sql_type))
        for name, sql_type in column_definitions(table)
    )
    return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(sql.Identifier(table.name), columns)


@lru_cache(maxsize=None)
def insert_statement(table: Table) -> sql.Composed:
    if not table.columns:
        return sql.SQL("INSERT INTO {} DEFAULT VALUES").format(sql.Identifier(table.name))
    return sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        sql.Identifier(table.name),
        sql.SQL(", ").join(sql.Identifier(c.name) for c in table.columns),
        sql.SQL(", ").join(sql.Placeholder() * len(table.columns)),
    )


class EventRepo:
    """DB access only. No business logic here.

    Responsibilities:
    - Create the schema's tables (idempotent)
    - Insert coerced rows inside a caller-controlled transaction
    - Keep transaction/commit boundaries local and explicit
    """

    def __init__(self, pool):
        self.pool = pool

    def create_tables(self, schema: Schema) -> None:
        """Create every table in `schema` that does not exist yet.

        All statements run in one transaction, so a failure leaves no
        half-created catalog behind. Safe to re-run on every start.
        """

        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        for table in schema.tables.values():
                            logger.debug("Ensuring table %s exists", table.name)
                            cur.execute(create_table_statement(table))
        except psycopg.Error as exc:
            raise DbError(f"failed to initialize database tables: {exc}") from exc
        logger.info("Materialized %d tables", len(schema.tables))

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Connection]:
        """Yield a connection inside one transaction.

        Commits when the block exits normally; rolls back on any exception.
        Non-database exceptions from the block propagate unchanged.
        """

        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    yield conn
        except psycopg.Error as exc:
            raise DbError(str(exc)) from exc

    def insert_row(self, conn, table: Table, values: Sequence[SqlValue]) -> None:
        """Insert one row; `values` follow `table.columns` order."""

        with conn.cursor() as cur:
            cur.execute(insert_statement(table), [v.adapt() for v in values])

    def ping(self) -> None:
        """Lightweight DB health check. Raises `DbError` on failure."""

        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1;")
        except psycopg.Error as exc:
            raise DbError(str(exc)) from exc
