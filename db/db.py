import psycopg
from contextlib import contextmanager

from config import settings


@contextmanager
def get_conn(dsn=None):
    """
    simple context manager to get a Postgres connection.
    autocommit is disabled so we can manage transactions explicitly.
    """
    with psycopg.connect(dsn or settings.database_url) as conn:
        conn.autocommit = False
        yield conn
