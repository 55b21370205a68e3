# db.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from psycopg2.extensions import connection as PgConnection
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

logger = logging.getLogger("gasbridge.db")

_pool: ThreadedConnectionPool | None = None


def init_pool(dsn: str | None = None, *, max_connections: int | None = None) -> None:
    """
    Open the shared pool. The engine workers, the webhook hand-off and the
    reconciler all borrow from it, so it must be the threaded flavour.
    """
    global _pool
    if _pool is not None:
        return
    _pool = ThreadedConnectionPool(
        minconn=1,
        maxconn=max_connections or settings.DB_POOL_MAX,
        dsn=dsn or settings.DATABASE_URL,
        connect_timeout=5,
        application_name="gasbridge_api",
    )
    logger.info("db pool opened maxconn=%s", max_connections or settings.DB_POOL_MAX)


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("db pool closed")


@contextmanager
def get_conn() -> Iterator[PgConnection]:
    """One transaction per block: commit on clean exit, roll back on any error."""
    if _pool is None:
        init_pool()

    conn = _pool.getconn()
    try:
        with conn.cursor() as cur:
            # SELECT ... FOR UPDATE must not wait forever behind a stuck holder
            cur.execute("SET statement_timeout = %s", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
            cur.execute("SET lock_timeout = %s", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _pool.putconn(conn)
