# db.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2.extensions
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

_pool: Optional[ThreadedConnectionPool] = None
_pool_lock = threading.Lock()


def init_pool() -> ThreadedConnectionPool:
    """
    Create the shared pool on first use. Sync route handlers and worker
    threads check connections out concurrently, hence the threaded pool.
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            psycopg2.extras.register_uuid()
            _pool = ThreadedConnectionPool(
                minconn=1,
                maxconn=settings.DB_POOL_MAX,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
                application_name="trm_api",
            )
        return _pool


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection]:
    """
    One transaction on a pooled connection: commit on success, rollback on error.
    Row locks taken inside (FOR UPDATE) are held until the block exits.
    """
    pool = _pool or init_pool()
    conn = pool.getconn()
    try:
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = %s;", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
            cur.execute("SET lock_timeout = %s;", (f"{settings.DB_LOCK_TIMEOUT_MS}ms",))
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def fetch_migration_revision() -> Optional[str]:
    """Current alembic revision, or None when the database was never migrated."""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT to_regclass('public.alembic_version');")
            if cur.fetchone()[0] is None:
                return None
            cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
            row = cur.fetchone()
            return row[0] if row else None
