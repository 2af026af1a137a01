"""
File: db.py
Purpose: Connection management for Postgres: optional pooling, schema bootstrap,
         and async wrappers for the FastAPI lifespan.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager

import psycopg2
from psycopg2.pool import SimpleConnectionPool

from .config import settings
from .instrumentation import STORE_TIME

TABLE = "incident_records"

# -------- Module globals --------
_POOL: SimpleConnectionPool | None = None


def _make_dsn() -> str:
    """Build psycopg2 DSN from settings; raise if anything essential is missing."""
    missing = [k for k, v in {
        "PG_HOST": settings.PG_HOST, "PG_USER": settings.PG_USER, "PG_PASS": settings.PG_PASS,
    }.items() if not v]
    if missing:
        raise RuntimeError(f"Missing Postgres env vars: {', '.join(missing)}")
    return settings.PG_DSN


@contextmanager
def get_conn():
    """Yield a DB connection (from pool if available)."""
    if _POOL is not None:
        with STORE_TIME.labels(op="connect_pool").time():
            conn = _POOL.getconn()
        try:
            yield conn
        finally:
            _POOL.putconn(conn)
    else:
        with STORE_TIME.labels(op="connect").time():
            conn = psycopg2.connect(_make_dsn())
        try:
            yield conn
        finally:
            conn.close()


# ----------------------- SYNC implementations -----------------------

def _init_db_pool_sync() -> None:
    """Create the global connection pool (idempotent) and warm a connection."""
    global _POOL
    if _POOL is None:
        with STORE_TIME.labels(op="pool_init").time():
            _POOL = SimpleConnectionPool(settings.PG_POOL_MIN, settings.PG_POOL_MAX, dsn=_make_dsn())
    with get_conn():
        pass


def _close_db_pool_sync() -> None:
    """Close the global connection pool and clear the handle."""
    global _POOL
    if _POOL is not None:
        _POOL.closeall()
        _POOL = None


def _ensure_schema_sync() -> None:
    """Create the incident table and its lookup indexes (idempotent)."""
    sqls = [
        f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
          incident_id             TEXT PRIMARY KEY,
          source_key              TEXT NOT NULL UNIQUE,
          status                  TEXT NOT NULL,
          assigned_to             TEXT,
          created_at              TEXT NOT NULL,
          status_priority_created TEXT NOT NULL,
          priority_created        TEXT NOT NULL,
          synced                  BOOLEAN NOT NULL DEFAULT FALSE,
          doc                     JSONB NOT NULL
        );
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_assignee "
        f"ON {TABLE} (assigned_to, created_at DESC, incident_id DESC);",
        f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_status "
        f"ON {TABLE} (status, created_at DESC, incident_id DESC);",
    ]
    with STORE_TIME.labels(op="schema").time():
        with get_conn() as conn, conn.cursor() as cur:
            for s in sqls:
                cur.execute(s)
            conn.commit()


# ----------------------- ASYNC wrappers (awaitable in lifespan) -----------------------

async def init_db_pool() -> None:
    await asyncio.to_thread(_init_db_pool_sync)


async def close_db_pool() -> None:
    await asyncio.to_thread(_close_db_pool_sync)


async def ensure_schema() -> None:
    await asyncio.to_thread(_ensure_schema_sync)
