"""
db.py

Read-only warehouse access (PostgreSQL via psycopg2) with connection pooling.

Why pooling matters
-------------------
Snapshot regenerations are infrequent but each one opens two long-running
queries. A process-global ThreadedConnectionPool keeps a warm connection around
and caps concurrent warehouse connections.

Streaming
---------
``iter_rows_conn`` uses a psycopg2 *named* (server-side) cursor so rows are
fetched from the warehouse in ``itersize`` batches instead of materializing the
full result set in memory.
"""

from __future__ import annotations

import atexit
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence, Tuple

from apps.backend.db_metrics import measure_query
from infra.config import get_settings


def _warehouse_url() -> str:
    url = get_settings().warehouse.url
    if not url:
        raise RuntimeError("WAREHOUSE_READONLY_UNIFIED_YSWS_DATABASE_URL is not set")
    return url


# Keep a single global pool per process.
_POOL = None
_POOL_DSN: Optional[str] = None
_POOL_LOCK = threading.Lock()


def _get_pool():
    """Return a process-global psycopg2 pool, creating it on first use."""
    global _POOL, _POOL_DSN

    dsn = _warehouse_url()
    with _POOL_LOCK:
        if _POOL is not None and _POOL_DSN == dsn:
            return _POOL

        from psycopg2.pool import ThreadedConnectionPool  # type: ignore

        cfg = get_settings().warehouse
        _POOL = ThreadedConnectionPool(
            minconn=1,
            maxconn=cfg.pool_maxconn,
            dsn=dsn,
            connect_timeout=cfg.connect_timeout,
        )
        _POOL_DSN = dsn
        return _POOL


def _close_pool() -> None:
    """Close the pool on process exit."""
    global _POOL
    try:
        if _POOL is not None:
            _POOL.closeall()
    except Exception:
        pass
    finally:
        _POOL = None


atexit.register(_close_pool)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Yield a pooled psycopg2 connection.

    - Callers should NOT close the connection; it is returned to the pool.
    - Always ends any open transaction before returning the connection to pool,
      so the next snapshot sees fresh warehouse data.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        try:
            conn.rollback()
        except Exception:
            pass
        try:
            pool.putconn(conn)
        except Exception:
            try:
                conn.close()
            except Exception:
                pass


def _query_name(sql: str, *, operation: str) -> str:
    """Return a stable query operation label for metrics/logging."""
    text = " ".join(str(sql or "").strip().split())
    if not text:
        return operation
    first_token = text.split(" ", 1)[0].lower()
    return f"{operation}:{first_token}"


def fetch_one_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
    """Execute a query on an existing connection and return one row (or None)."""
    with conn.cursor() as cur:
        with measure_query(_query_name(sql, operation="fetch_one_conn")):
            cur.execute(sql, params or ())
        return cur.fetchone()


def iter_rows_conn(
    conn: Any,
    sql: str,
    *,
    cursor_name: str,
    params: Optional[Sequence[Any]] = None,
    itersize: int = 2000,
) -> Iterator[Tuple[Any, ...]]:
    """Stream rows through a server-side cursor.

    The cursor lives inside the connection's transaction; ``db_conn`` rolls it
    back when the connection goes back to the pool.
    """
    with conn.cursor(name=cursor_name) as cur:
        cur.itersize = itersize
        with measure_query(f"stream:{cursor_name}"):
            cur.execute(sql, params or ())
            for row in cur:
                yield row


def ping() -> bool:
    """Return True when the warehouse answers ``SELECT 1``."""
    with db_conn() as conn:
        row = fetch_one_conn(conn, "SELECT 1")
    return bool(row and row[0] == 1)
