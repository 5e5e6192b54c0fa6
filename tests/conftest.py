"""
Shared fixtures: a sample schema and an in-memory stand-in for the pool.

`FakePool` mimics the parts of `psycopg_pool.ConnectionPool` and
`psycopg.Connection` the repository touches: `pool.connection()`,
`conn.transaction()` and `conn.cursor().execute()`. Statements executed
inside a transaction land in `committed` on success and are discarded on
rollback.
"""

from contextlib import contextmanager

import psycopg
import pytest

from schema import build_schema


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        if self.conn.fail_on_execute:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.conn.pending.append((query, params))


class FakeConnection:
    def __init__(self):
        self.pending = []
        self.committed = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_execute = False
        self.fail_on_commit = False

    def cursor(self):
        return FakeCursor(self)

    @contextmanager
    def transaction(self):
        try:
            yield
        except BaseException:
            self.pending.clear()
            self.rollbacks += 1
            raise
        if self.fail_on_commit:
            self.pending.clear()
            self.rollbacks += 1
            raise psycopg.OperationalError("could not commit transaction")
        self.committed.extend(self.pending)
        self.pending.clear()
        self.commits += 1


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.checkouts = 0

    @contextmanager
    def connection(self):
        self.checkouts += 1
        yield self.conn


SCHEMA_DOCUMENT = {
    "apps": [
        {
            "id": "demo",
            "secret_key": "right",
            "allowed_origin": "*",
            "tables": ["page_views", "clicks"],
        },
        {
            "id": "shop",
            "secret_key": "shop-secret",
            "allowed_origin": "https://shop.example.com",
            "tables": ["clicks"],
        },
    ],
    "tables": [
        {
            "name": "page_views",
            "columns": [
                {"name": "ts", "type": "timestamp", "required": True},
                {"name": "path", "required": True},
                {"name": "duration_ms", "type": "i32"},
                {"name": "user_agent", "header": "User-Agent"},
            ],
        },
        {
            "name": "clicks",
            "columns": [
                {"name": "element", "type": "string", "required": True},
                {"name": "x", "type": "f32"},
                {"name": "logged_in", "type": "bool"},
            ],
        },
        {
            "name": "unused",
            "columns": [{"name": "n", "type": "i64"}],
        },
    ],
}


@pytest.fixture
def schema_document():
    """A fresh copy of the sample configuration document."""
    import copy

    return copy.deepcopy(SCHEMA_DOCUMENT)


@pytest.fixture
def schema(schema_document):
    return build_schema(schema_document)


@pytest.fixture
def pool():
    return FakePool()
