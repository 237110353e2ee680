"""Database connection management and schema initialisation.

Provides:
- ``init_db_schema(conn)``: Enable PRAGMAs, create the session and message tables.
- ``DatabasePool``: Simple connection pool for concurrent reads.
"""

from __future__ import annotations

import asyncio

import aiosqlite


# ---------------------------------------------------------------------------
# Schema SQL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS chat_sessions (
    id              TEXT PRIMARY KEY,
    username        TEXT NOT NULL,
    agent           TEXT NOT NULL DEFAULT '',
    title           TEXT NOT NULL DEFAULT 'New Chat',
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
    seq             INTEGER NOT NULL,
    role            TEXT NOT NULL CHECK(role IN ('user', 'model')),
    content         TEXT NOT NULL,
    images_json     TEXT,
    charts_json     TEXT,
    tool_calls_json TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chat_sessions_username ON chat_sessions(username, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_session_seq ON messages(session_id, seq);
"""


# ---------------------------------------------------------------------------
# Connection Pool
# ---------------------------------------------------------------------------


class DatabasePool:
    """Simple connection pool for concurrent read operations.

    SQLite with WAL mode allows multiple concurrent readers but only one writer.
    This pool maintains a small number of read connections to handle concurrent
    GET requests while keeping a single write connection for INSERT/DELETE.
    """

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=pool_size)
        self._write_conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create all connections and initialize the database schema."""
        self._write_conn = await aiosqlite.connect(self.db_path)
        self._write_conn.row_factory = aiosqlite.Row
        await init_db_schema(self._write_conn)

        for _ in range(self.pool_size):
            conn = await aiosqlite.connect(self.db_path)
            conn.row_factory = aiosqlite.Row
            # Read-only connections don't need full init, just PRAGMAs
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await self._pool.put(conn)

    async def close(self) -> None:
        """Close all connections in the pool."""
        if self._write_conn:
            await self._write_conn.close()
            self._write_conn = None

        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()

    async def acquire_read(self) -> aiosqlite.Connection:
        """Acquire a read connection from the pool."""
        return await self._pool.get()

    async def release_read(self, conn: aiosqlite.Connection) -> None:
        """Release a read connection back to the pool."""
        await self._pool.put(conn)

    def get_write_connection(self) -> aiosqlite.Connection:
        """Get the dedicated write connection.

        Chat controllers hold this connection for the lifetime of a
        WebSocket so that message writes stay serialized.
        """
        if not self._write_conn:
            raise RuntimeError("Pool not initialized")
        return self._write_conn


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def init_db_schema(conn: aiosqlite.Connection) -> None:
    """Initialise the database: enable PRAGMAs, create tables and indexes.

    The caller is responsible for opening and closing the connection.
    """
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.executescript(_SCHEMA_SQL)
    await conn.commit()
