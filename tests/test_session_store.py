"""Tests for app.services.session_store -- sessions and ordered messages."""

from __future__ import annotations

import pytest

from app.exceptions import NotFoundError

from .conftest import insert_session
from .factories import make_chat_session


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_returns_id_and_lists(self, store):
        created = await store.create_session("alice", "lisa", "Chat · Mar 3 09:15")

        sessions = await store.get_sessions("alice")

        assert sessions == [
            {
                "id": created["id"],
                "agent": "lisa",
                "title": "Chat · Mar 3 09:15",
                "createdAt": sessions[0]["createdAt"],
                "messageCount": 0,
            }
        ]

    @pytest.mark.asyncio
    async def test_blank_title_defaults(self, store):
        await store.create_session("alice", "lisa", "")

        (session,) = await store.get_sessions("alice")
        assert session["title"] == "New Chat"

    @pytest.mark.asyncio
    async def test_newest_first_and_scoped_to_user(self, fresh_db, store):
        old = make_chat_session(username="alice", created_at="2024-01-01T00:00:00")
        new = make_chat_session(username="alice", created_at="2024-06-01T00:00:00")
        other = make_chat_session(username="bob")
        for s in (old, new, other):
            await insert_session(fresh_db, s)

        sessions = await store.get_sessions("alice")

        assert [s["id"] for s in sessions] == [new["id"], old["id"]]

    @pytest.mark.asyncio
    async def test_message_count(self, store, seeded_session):
        await store.save_message(seeded_session["id"], "user", "hi")
        await store.save_message(seeded_session["id"], "model", "hello")

        (session,) = await store.get_sessions("test-user")
        assert session["messageCount"] == 2

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, store, seeded_session):
        await store.save_message(seeded_session["id"], "user", "hi")

        assert await store.delete_session(seeded_session["id"]) is True

        assert await store.get_sessions("test-user") == []
        assert await store.load_messages(seeded_session["id"]) == []

    @pytest.mark.asyncio
    async def test_delete_unknown_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_session("missing")


class TestMessages:
    @pytest.mark.asyncio
    async def test_insertion_order_preserved(self, store, seeded_session):
        sid = seeded_session["id"]
        for i in range(5):
            await store.save_message(sid, "user" if i % 2 == 0 else "model", f"m{i}")

        messages = await store.load_messages(sid)

        assert [m["content"] for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
        assert [m["role"] for m in messages] == ["user", "model", "user", "model", "user"]

    @pytest.mark.asyncio
    async def test_optional_lists_round_trip(self, store, seeded_session):
        sid = seeded_session["id"]
        chart = {"_chartType": "timeSeries", "data": [{"x": "2024-01-01", "y": 1}]}
        call = {"name": "get_top_items", "args": {"sort_column": "views"}, "result": {"count": 0}}

        await store.save_message(
            sid,
            "model",
            "Here you go",
            images=[{"mimeType": "image/png", "data": "cG5n"}],
            charts=[chart],
            tool_calls=[call],
        )
        (message,) = await store.load_messages(sid)

        assert message["images"] == [{"mimeType": "image/png", "data": "cG5n"}]
        assert message["charts"] == [chart]
        assert message["toolCalls"] == [call]
        assert message["timestamp"]

    @pytest.mark.asyncio
    async def test_empty_lists_are_omitted(self, store, seeded_session):
        await store.save_message(seeded_session["id"], "user", "plain", images=[], charts=None)

        (message,) = await store.load_messages(seeded_session["id"])

        assert set(message) == {"id", "role", "content", "timestamp"}

    @pytest.mark.asyncio
    async def test_save_to_unknown_session_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.save_message("missing", "user", "hi")

    @pytest.mark.asyncio
    async def test_unreadable_json_column_is_dropped(self, fresh_db, store, seeded_session):
        await store.save_message(seeded_session["id"], "model", "x", charts=[{"a": 1}])
        await fresh_db.execute("UPDATE messages SET charts_json = '{broken'")
        await fresh_db.commit()

        (message,) = await store.load_messages(seeded_session["id"])

        assert "charts" not in message
