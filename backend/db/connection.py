"""
db/connection.py
-----------------
Process-wide psycopg2 ThreadedConnectionPool for the durable result store
(db/result_store.py) and the Postgres progress sink.

    with get_conn() as conn:
        optimization_repo.insert_result(conn, record)

A borrowed connection is committed when the block exits cleanly, rolled back
when it raises, and handed back to the pool either way. The pool is created
on first use, so importing this module never opens a socket.

Connection settings: POSTGRES_HOST / PORT / DB / USER / PASSWORD,
POSTGRES_MIN_CONN / MAX_CONN and POSTGRES_CONNECT_TIMEOUT (config.py).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

import psycopg2
import psycopg2.pool

import config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None


def connect_kwargs() -> dict:
    """Keyword arguments for psycopg2.connect (also used by scripts/run_migrations.py)."""
    return {
        "host":             config.POSTGRES_HOST,
        "port":             config.POSTGRES_PORT,
        "dbname":           config.POSTGRES_DB,
        "user":             config.POSTGRES_USER,
        "password":         config.POSTGRES_PASSWORD,
        "connect_timeout":  config.POSTGRES_CONNECT_TIMEOUT,
        "application_name": "fairtrip-optimizer",
    }


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    global _pool
    if _pool is None or _pool.closed:
        logger.info("Opening Postgres pool %s@%s:%s (max %d)", config.POSTGRES_DB,
                    config.POSTGRES_HOST, config.POSTGRES_PORT, config.POSTGRES_MAX_CONN)
        _pool = psycopg2.pool.ThreadedConnectionPool(
            config.POSTGRES_MIN_CONN, config.POSTGRES_MAX_CONN, **connect_kwargs(),
        )
    return _pool


@contextmanager
def get_conn() -> Generator:
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def ping() -> bool:
    """True if a pooled connection answers SELECT 1."""
    try:
        with get_conn() as conn, conn.cursor() as cur:
            cur.execute("SELECT 1")
            return cur.fetchone() == (1,)
    except psycopg2.Error as exc:
        logger.warning("Postgres ping failed: %s", exc)
        return False


def close_pool() -> None:
    """Close every pooled connection (application shutdown)."""
    global _pool
    if _pool is not None and not _pool.closed:
        _pool.closeall()
    _pool = None
