"""
asyncpg pool shared by the CRUD gateway and the change tracker.

FastAPI opens the pool in the lifespan before tracking boots and closes it
after the poller has stopped (see `api/main.py`).

Placeholders are positional ($1, $2, ...). Table and column names are never
bound; callers quote them through `core.identifiers` first.

Connections are acquired with a bounded wait (DB_ACQUIRE_TIMEOUT_S). When the
pool is exhausted the caller gets `asyncio.TimeoutError`: the CRUD layer turns
it into a 500, the tracker logs it and retries on the next cycle.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg

from core import settings

DEFAULT_ACQUIRE_TIMEOUT_S = 10.0
DEFAULT_COMMAND_TIMEOUT_S = 30.0

_pool: asyncpg.Pool | None = None


def _sanitize_database_url(url: str) -> str:
    # asyncpg rejects libpq's `sslmode` query parameter.
    parts = urlsplit(url)
    if not parts.query:
        return url
    kept = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


def database_url() -> str:
    url = settings.env_str("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def acquire_timeout_s() -> float:
    return settings.env_float("DB_ACQUIRE_TIMEOUT_S", DEFAULT_ACQUIRE_TIMEOUT_S)


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return None
    _pool = await asyncpg.create_pool(
        dsn=database_url(),
        min_size=settings.env_int("DB_POOL_MIN_SIZE", 1),
        max_size=settings.env_int("DB_POOL_MAX_SIZE", 10),
        command_timeout=settings.env_float("DB_COMMAND_TIMEOUT_S", DEFAULT_COMMAND_TIMEOUT_S),
    )


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return None
    await _pool.close()
    _pool = None


def pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("DB pool is not initialized. Call init_pool() on startup.")
    return _pool


@asynccontextmanager
async def _connection() -> AsyncIterator[asyncpg.Connection]:
    async with pool().acquire(timeout=acquire_timeout_s()) as conn:
        yield conn


def _affected_rows(status: str) -> int:
    # Command tag, e.g. "DELETE 3" or "INSERT 0 1".
    tail = (status or "").rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


async def fetch_one(sql: str, *args: Any) -> dict[str, Any] | None:
    async with _connection() as conn:
        row = await conn.fetchrow(sql, *args)
    return dict(row) if row is not None else None


async def fetch_all(sql: str, *args: Any) -> list[dict[str, Any]]:
    async with _connection() as conn:
        rows = await conn.fetch(sql, *args)
    return [dict(r) for r in rows]


async def execute(sql: str, *args: Any) -> None:
    """
    DDL or DML where the affected row count does not matter.
    """
    async with _connection() as conn:
        await conn.execute(sql, *args)


async def fetch_status(sql: str, *args: Any) -> int:
    """
    DML returning the number of affected rows (DELETE ... WHERE ...).
    """
    async with _connection() as conn:
        status = await conn.execute(sql, *args)
    return _affected_rows(status)
