"""Tests for app.services.ws_messages factories and the ConnectionManager."""

from __future__ import annotations

from app.services import ws_messages
from app.services.chat_service import ChatController
from app.services.connection_manager import ConnectionManager


class TestFactories:
    def test_chat_token(self):
        assert ws_messages.chat_token(token="Hi", message_id="a-1") == {
            "type": "ct",
            "t": "Hi",
            "mid": "a-1",
        }

    def test_chat_complete_omits_false_cancel_flag(self):
        assert ws_messages.chat_complete(message_id="a-1", content="done") == {
            "type": "cc",
            "mid": "a-1",
            "c": "done",
        }
        assert ws_messages.chat_complete(message_id="a-1", content="", cancelled=True)["x"] is True

    def test_chat_error_omits_empty_details(self):
        assert ws_messages.chat_error(error="boom") == {"type": "ce", "e": "boom"}
        assert ws_messages.chat_error(error="boom", details="trace")["d"] == "trace"

    def test_tool_result(self):
        msg = ws_messages.tool_result(
            message_id="a-1",
            charts=[{"_chartType": "timeSeries"}],
            tool_calls=[{"name": "plot_metric_vs_time"}],
        )

        assert msg["type"] == "tr"
        assert msg["ch"] == [{"_chartType": "timeSeries"}]
        assert msg["tc"] == [{"name": "plot_metric_vs_time"}]

    def test_session_deleted(self):
        assert ws_messages.session_deleted(session_id="s1", active_session_id="new") == {
            "type": "sd",
            "sid": "s1",
            "asid": "new",
        }


class TestConnectionManager:
    def _controller(self, username: str) -> ChatController:
        async def send(msg: dict) -> None:
            pass

        return ChatController(store=None, send=send, username=username)  # type: ignore[arg-type]

    def test_register_and_count(self):
        mgr = ConnectionManager()
        a1, a2, b = self._controller("a"), self._controller("a"), self._controller("b")

        for c in (a1, a2, b):
            mgr.register(c)

        assert mgr.connection_count == 3
        assert mgr._controllers["a"] == [a1, a2]

    def test_unregister_is_idempotent(self):
        mgr = ConnectionManager()
        c = self._controller("a")
        mgr.register(c)

        mgr.unregister(c)
        mgr.unregister(c)

        assert mgr.connection_count == 0
        assert "a" not in mgr._controllers

    def test_streaming_count(self):
        mgr = ConnectionManager()
        idle, busy = self._controller("a"), self._controller("b")
        busy._streaming = True
        mgr.register(idle)
        mgr.register(busy)

        assert mgr.streaming_count == 1
