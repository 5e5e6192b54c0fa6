#!/usr/bin/env python3
"""
Create the tables declared in the schema file without starting the server.

Usage:
    python scripts/create_tables.py [path/to/schema.conf.yaml]

Safe to run repeatedly: existing tables are left untouched.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from db import create_pool
from errors import ConfigError, DbError
from repo_events import EventRepo, column_definitions
from schema import load_schema
from settings import settings


def main(schema_path: str) -> int:
    try:
        schema = load_schema(schema_path)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print('Connecting to', settings.db_url.split('@')[-1])
    pool = create_pool()
    try:
        EventRepo(pool).create_tables(schema)
    except DbError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        pool.close()

    for table in schema.tables.values():
        columns = ", ".join(f"{name} {sql_type}" for name, sql_type in column_definitions(table))
        print(f"  {table.name} ({columns})")
    print('DDL applied')
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else settings.schema_path))
