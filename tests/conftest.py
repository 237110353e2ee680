"""Shared pytest fixtures for backend tests.

Provides:
- ``fresh_db``: in-memory SQLite with the session/message schema
- ``store``: ``SessionStore`` over ``fresh_db``
- ``seeded_session``: a session row for ``test-user`` inserted into ``fresh_db``
- ``client``: httpx.AsyncClient bound to the FastAPI app and ``fresh_db``
- ``ws_sink``: async ``send`` callable recording every event dict
"""

from __future__ import annotations

import os

# Required settings must exist before any ``app`` module is imported
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("SYSTEM_PROMPT_PATH", "")

import aiosqlite
import pytest
import pytest_asyncio

from app.database import init_db_schema
from app.services.session_store import SessionStore

from .factories import make_chat_session


# ---------------------------------------------------------------------------
# Helper: insert rows via parameterised SQL
# ---------------------------------------------------------------------------


async def insert_session(db: aiosqlite.Connection, session: dict) -> None:
    await db.execute(
        "INSERT INTO chat_sessions (id, username, agent, title, created_at) "
        "VALUES (?, ?, ?, ?, ?)",
        (
            session["id"],
            session["username"],
            session["agent"],
            session["title"],
            session["created_at"],
        ),
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def fresh_db():
    """In-memory SQLite database with the full schema."""
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await init_db_schema(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store(fresh_db):
    return SessionStore(fresh_db)


@pytest_asyncio.fixture
async def seeded_session(fresh_db):
    """A persisted session owned by ``test-user``."""
    session = make_chat_session()
    await insert_session(fresh_db, session)
    return session


@pytest_asyncio.fixture
async def client(fresh_db):
    """httpx.AsyncClient pointing at the FastAPI app.

    ``app.state.db`` is patched to ``fresh_db`` so the ``get_db`` dependency
    returns the test database.
    """
    from httpx import ASGITransport, AsyncClient

    from app.main import app

    app.state.db = fresh_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def ws_sink():
    """Async callable that captures every event dict sent to the client."""
    sent: list[dict] = []

    async def send(msg: dict) -> None:
        sent.append(msg)

    send.messages = sent  # type: ignore[attr-defined]
    return send
