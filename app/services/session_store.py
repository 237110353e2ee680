"""Session store: chat sessions and their ordered message history.

Implements the persistence collaborator used by the chat controller and the
REST routers. All methods take/return plain dicts using the camelCase keys
the front end renders (``createdAt``, ``messageCount``, ``toolCalls``).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

import aiosqlite

from app.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


def _dump(value: list | None) -> str | None:
    """Serialize an optional list column; empty lists are stored as NULL."""
    if not value:
        return None
    return json.dumps(value, default=str)


def _load(raw: str | None) -> list | None:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unreadable JSON column value")
        return None


class SessionStore:
    """aiosqlite-backed store for sessions and messages.

    Messages keep insertion order within a session via a per-session
    monotonically increasing ``seq`` column.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def create_session(self, username: str, agent: str, title: str) -> dict:
        """Insert a new session and return ``{"id": ...}``."""
        session_id = str(uuid4())
        await self._db.execute(
            "INSERT INTO chat_sessions (id, username, agent, title, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (session_id, username, agent, title or "New Chat", _now()),
        )
        await self._db.commit()
        logger.info("Created session %s for %s", session_id, username)
        return {"id": session_id}

    async def get_sessions(self, username: str) -> list[dict]:
        """List sessions for *username*, newest first, with message counts."""
        cursor = await self._db.execute(
            "SELECT s.id, s.agent, s.title, s.created_at, "
            "  (SELECT COUNT(*) FROM messages m WHERE m.session_id = s.id) AS message_count "
            "FROM chat_sessions s "
            "WHERE s.username = ? "
            "ORDER BY s.created_at DESC",
            (username,),
        )
        rows = await cursor.fetchall()
        return [
            {
                "id": row["id"],
                "agent": row["agent"],
                "title": row["title"],
                "createdAt": row["created_at"],
                "messageCount": row["message_count"],
            }
            for row in rows
        ]

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and (by cascade) its messages.

        Raises:
            NotFoundError: If the session does not exist.
        """
        await self._db.execute("PRAGMA foreign_keys=ON")
        cursor = await self._db.execute(
            "DELETE FROM chat_sessions WHERE id = ?", (session_id,)
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError("Session not found")
        # Explicit cleanup for connections opened without foreign key enforcement
        await self._db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        await self._db.commit()
        return True

    async def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        images: list[dict] | None = None,
        charts: list[dict] | None = None,
        tool_calls: list[dict] | None = None,
    ) -> dict:
        """Append a message to *session_id* and return ``{"id": ...}``.

        Raises:
            NotFoundError: If the session does not exist.
        """
        cursor = await self._db.execute(
            "SELECT id FROM chat_sessions WHERE id = ?", (session_id,)
        )
        if await cursor.fetchone() is None:
            raise NotFoundError("Session not found")

        cursor = await self._db.execute(
            "SELECT COALESCE(MAX(seq), 0) AS last_seq FROM messages WHERE session_id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        seq = row["last_seq"] + 1

        message_id = str(uuid4())
        await self._db.execute(
            "INSERT INTO messages "
            "(id, session_id, seq, role, content, images_json, charts_json, tool_calls_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                message_id,
                session_id,
                seq,
                role,
                content,
                _dump(images),
                _dump(charts),
                _dump(tool_calls),
                _now(),
            ),
        )
        await self._db.commit()
        return {"id": message_id}

    async def load_messages(self, session_id: str) -> list[dict]:
        """Return the messages of *session_id* in insertion order."""
        cursor = await self._db.execute(
            "SELECT id, role, content, images_json, charts_json, tool_calls_json, created_at "
            "FROM messages WHERE session_id = ? ORDER BY seq",
            (session_id,),
        )
        rows = await cursor.fetchall()
        messages: list[dict] = []
        for row in rows:
            msg: dict = {
                "id": row["id"],
                "role": row["role"],
                "content": row["content"],
                "timestamp": row["created_at"],
            }
            images = _load(row["images_json"])
            charts = _load(row["charts_json"])
            tool_calls = _load(row["tool_calls_json"])
            if images:
                msg["images"] = images
            if charts:
                msg["charts"] = charts
            if tool_calls:
                msg["toolCalls"] = tool_calls
            messages.append(msg)
        return messages
