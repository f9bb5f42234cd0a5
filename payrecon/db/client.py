from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2 import sql
from psycopg2.pool import SimpleConnectionPool

from payrecon.config import settings

logger = logging.getLogger(__name__)

_pool: SimpleConnectionPool | None = None


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    global _pool
    if _pool is not None or not settings.db_enabled:
        return
    _pool = SimpleConnectionPool(minconn, maxconn, dsn=settings.db_dsn)
    logger.info("database pool ready", extra={"endpoint": settings.db_host})


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


def _checkout(pool: SimpleConnectionPool) -> psycopg2.extensions.connection:
    # A pooled connection may have been closed by the server; retry once
    for attempt in range(2):
        conn = pool.getconn()
        try:
            if settings.db_schema:
                with conn.cursor() as cur:
                    cur.execute(sql.SQL("SET search_path TO {}").format(sql.Identifier(settings.db_schema)))
            return conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            pool.putconn(conn, close=True)
            if attempt == 1:
                raise
    raise psycopg2.OperationalError("no usable connection")


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection | None]:
    """Yield a pooled connection; commit on success, roll back on error.

    Yields None when no database is configured.
    """
    if _pool is None:
        init_pool()
    if _pool is None:
        yield None
        return
    conn = _checkout(_pool)
    try:
        yield conn
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except psycopg2.Error as exc:
            logger.warning("rollback failed", extra={"error": str(exc)})
        raise
    finally:
        _pool.putconn(conn)
