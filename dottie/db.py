"""Async access to the chat database over libsql.

The ``libsql`` driver is synchronous, so every call is pushed to a worker
thread with ``asyncio.to_thread()``. Queries that return rows run the
statement and the fetch in a single hop.

Connection target is determined by settings:

- **Production**: ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- **Dev/test**: no Turso env vars → local SQLite file via ``database_path``
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import libsql

from dottie.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

Params = tuple[Any, ...]


class AsyncConnection:
    """Awaitable facade over one synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: Params = ()) -> int:
        """Run a statement and return the affected row count."""

        def _run() -> int:
            return self._conn.execute(sql, params).rowcount

        return await asyncio.to_thread(_run)

    async def fetch_one(self, sql: str, params: Params = ()) -> tuple | None:
        return await asyncio.to_thread(lambda: self._conn.execute(sql, params).fetchone())

    async def fetch_all(self, sql: str, params: Params = ()) -> list[tuple]:
        return await asyncio.to_thread(lambda: self._conn.execute(sql, params).fetchall())

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._conn.rollback)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _connect(local_path_override: Path | None) -> Any:
    """Open the configured database. Runs in a worker thread."""
    if not local_path_override and settings.turso_database_url:
        return libsql.connect(
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )

    path = local_path_override or settings.database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


async def get_connection(local_path_override: Path | None = None) -> AsyncConnection:
    """Return an async connection.

    If *local_path_override* is given (test isolation), it takes priority.
    Otherwise, ``TURSO_DATABASE_URL`` triggers a remote connection, and
    ``database_path`` falls back to a local file.
    """
    conn = await asyncio.to_thread(_connect, local_path_override)
    return AsyncConnection(conn)


@asynccontextmanager
async def unit_of_work(
    local_path_override: Path | None = None,
) -> AsyncIterator[AsyncConnection]:
    """Open a connection for one unit of work.

    Commits when the block exits cleanly, rolls back when it raises, and
    always closes the connection.
    """
    conn = await get_connection(local_path_override)
    try:
        yield conn
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise
    finally:
        await conn.close()
