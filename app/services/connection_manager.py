"""Registry of live chat connections.

Created in the ``main.py`` lifespan and stored on ``app.state``. Each
WebSocket connection owns one :class:`ChatController`; a user may hold
several at once (multiple tabs).
"""

from __future__ import annotations

from app.services.chat_service import ChatController


class ConnectionManager:
    """Tracks the chat controllers of connected users."""

    def __init__(self) -> None:
        self._controllers: dict[str, list[ChatController]] = {}

    def register(self, controller: ChatController) -> None:
        self._controllers.setdefault(controller.username, []).append(controller)

    def unregister(self, controller: ChatController) -> None:
        """Forget *controller*; a no-op if it is not tracked."""
        controllers = self._controllers.get(controller.username)
        if not controllers or controller not in controllers:
            return
        controllers.remove(controller)
        if not controllers:
            del self._controllers[controller.username]

    @property
    def connection_count(self) -> int:
        return sum(len(c) for c in self._controllers.values())

    @property
    def streaming_count(self) -> int:
        return sum(1 for cs in self._controllers.values() for c in cs if c.is_streaming)
