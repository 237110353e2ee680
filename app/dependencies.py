"""FastAPI dependency injection functions.

Provides:
- ``get_db(request)``: Returns a database connection from the pool.
- ``get_store(db)``: Wraps the connection in a ``SessionStore``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import aiosqlite
from fastapi import Depends, Request

from app.database import DatabasePool
from app.services.session_store import SessionStore


# ---------------------------------------------------------------------------
# get_db
# ---------------------------------------------------------------------------


async def get_db(request: Request) -> AsyncIterator[aiosqlite.Connection]:
    """Return a database connection from the pool (or shared connection for tests).

    Writes (POST/PATCH/DELETE/PUT) get the dedicated write connection; reads
    borrow a pooled read connection for the duration of the request.
    """
    pool = getattr(request.app.state, "db_pool", None)
    if not isinstance(pool, DatabasePool):
        # Tests install a single in-memory connection on app.state.db
        yield request.app.state.db
        return

    if request.method in ("POST", "PATCH", "DELETE", "PUT"):
        yield pool.get_write_connection()
        return

    conn = await pool.acquire_read()
    try:
        yield conn
    finally:
        await pool.release_read(conn)


# ---------------------------------------------------------------------------
# get_store
# ---------------------------------------------------------------------------


async def get_store(db: aiosqlite.Connection = Depends(get_db)) -> SessionStore:
    """Session store bound to the request's connection."""
    return SessionStore(db)
