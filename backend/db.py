"""
Database connection helper.

This module centralizes how connections are created. Right now we use
`psycopg.connect(settings.db_url)` which opens a new connection per call.
The analytics engine reloads everything in one pass, so a pool would buy
little; swap it in here if write traffic grows.

Usage:
    from db import get_conn
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
"""

import psycopg
from settings import settings


def get_conn(db_url: str | None = None):
    """Return a new psycopg connection, defaulting to `settings.db_url`.

    The short `connect_timeout` keeps a health check from hanging when the
    database is unreachable.
    """

    return psycopg.connect(db_url or settings.db_url, connect_timeout=5)
