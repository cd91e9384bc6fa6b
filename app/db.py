"""Postgres access helpers (psycopg2 pool, named queries, error codes)."""

from __future__ import annotations

import contextvars
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool

from app.errors import ApiError, ConflictForeignKey, Forbidden, Unexpected

PG_INSUFFICIENT_PRIVILEGE = "42501"
PG_FOREIGN_KEY_VIOLATION = "23503"
PG_UNDEFINED_TABLE = "42P01"

_POOL: SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_logger = logging.getLogger("orgbase.db")
_query_logger = logging.getLogger("orgbase.db.query")
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("orgbase_db_stats", default=None)
_SLOW_MS = float(os.getenv("ORGBASE_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("ORGBASE_QUERY_LOG", "").strip() == "1"


def get_db_url() -> str:
    url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def reset_db_stats() -> None:
    _DB_STATS.set({"queries": 0, "total_ms": 0.0, "names": []})


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "total_ms": 0.0, "names": []}
    return stats


def _record_query(query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    stats = get_db_stats()
    stats["queries"] = stats.get("queries", 0) + 1
    stats["total_ms"] = stats.get("total_ms", 0.0) + elapsed_ms
    stats.setdefault("names", []).append(query_name or "unnamed")
    _DB_STATS.set(stats)
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    with _POOL_LOCK:
        if _POOL is not None:
            return
        if minconn is None:
            minconn = int(os.getenv("ORGBASE_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("ORGBASE_DB_POOL_MAX", "10"))
        _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


@contextmanager
def get_conn():
    """Borrow a pooled connection as one transaction: commit on exit, roll back on error."""
    pool = _get_pool()
    conn = pool.getconn()
    _logger.debug("db_conn borrowed")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
        _logger.debug("db_conn returned")


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    _record_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    _record_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rows


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    _record_query(query_name, params, (time.perf_counter() - start) * 1000, rowcount)
    return rowcount


def pg_code(exc: BaseException) -> str | None:
    code = getattr(exc, "pgcode", None)
    return code if isinstance(code, str) else None


def is_undefined_table(exc: BaseException) -> bool:
    return pg_code(exc) == PG_UNDEFINED_TABLE


def translate_db_error(exc: BaseException, context: str) -> ApiError:
    """Map a driver error onto the API taxonomy; the raw error is only logged."""
    if isinstance(exc, ApiError):
        return exc
    code = pg_code(exc)
    _logger.error("db_error context=%s pgcode=%s error=%s", context, code, exc)
    if code == PG_INSUFFICIENT_PRIVILEGE:
        return Forbidden("Permission denied")
    if code == PG_FOREIGN_KEY_VIOLATION:
        diag = getattr(exc, "diag", None)
        constraint = getattr(diag, "constraint_name", None) if diag else None
        err = ConflictForeignKey("Referenced row does not exist")
        if constraint:
            err.details = [{"code": "DB_CONSTRAINT", "message": "Foreign key violation", "path": None, "detail": {"constraint": constraint}}]
        return err
    return Unexpected(f"Unexpected error while processing {context} request.")
