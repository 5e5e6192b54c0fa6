#!/usr/bin/env python3
"""Print the row count of every table declared in the schema file."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from psycopg import sql

from db import get_conn
from schema import load_schema
from settings import settings

schema = load_schema(sys.argv[1] if len(sys.argv) > 1 else settings.schema_path)

with get_conn() as conn:
    with conn.cursor() as cur:
        for name in sorted(schema.tables):
            cur.execute(sql.SQL("SELECT COUNT(*) FROM {}").format(sql.Identifier(name)))
            print(f'{name}:', cur.fetchone()[0])
