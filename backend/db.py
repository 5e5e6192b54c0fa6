"""
Database connection helper.

This module centralizes how connections are created. The service shares
one bounded `psycopg_pool.ConnectionPool`; each request checks out exactly
one connection for the length of its transaction. When the pool is
exhausted, `pool.connection()` blocks for up to `settings.pool_timeout`
seconds and then raises `PoolTimeout`.

Usage:
    from db import create_pool
    pool = create_pool()
    with pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")

Repository code only needs `pool.connection()`, so tests can pass any
object with that context manager.
"""

import logging

import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout

from settings import settings

logger = logging.getLogger(__name__)


def create_pool(db_url: str | None = None) -> ConnectionPool:
    """Open the shared connection pool.

    We pass a short `connect_timeout` so a request does not hang
    indefinitely if the database is unreachable; the pool's own `timeout`
    bounds how long a request waits for a free connection.

    Waits up to `connect_timeout` for the first connections, so an
    unreachable database fails startup with `PoolTimeout` right away.
    """

    pool = ConnectionPool(
        db_url or settings.db_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        timeout=settings.pool_timeout,
        kwargs={"connect_timeout": settings.connect_timeout},
        name="eventsink",
        open=True,
    )
    try:
        pool.wait(timeout=settings.connect_timeout)
    except PoolTimeout:
        pool.close()
        raise
    logger.info("Opened connection pool (min=%d, max=%d)", settings.pool_min_size, settings.pool_max_size)
    return pool


def get_conn(db_url: str | None = None):
    """Return a new, unpooled psycopg connection.

    Used by one-off scripts that run a single statement and exit.
    """

    return psycopg.connect(db_url or settings.db_url, connect_timeout=settings.connect_timeout)
