"""WebSocket endpoint driving one chat controller per connection.

Provides:
- ``WS /ws/chat?username=...``: client actions in, server-push events out.

Client frames are JSON objects with an ``action`` field:
``list_sessions``, ``new_chat``, ``select_session``, ``delete_session``,
``attach_file``, ``send`` and ``stop``. A ``send`` runs as a background task
so that ``stop`` can be received while the response is streaming.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.exceptions import ConflictError, NotFoundError
from app.services import ws_messages
from app.services.chat_service import ChatController
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HEARTBEAT_INTERVAL: float = 30.0  # seconds between heartbeat pings

# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter()


async def _heartbeat(websocket: WebSocket) -> None:
    """Send periodic pings until the socket stops accepting them."""
    try:
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            await websocket.send_json({"type": "ping"})
    except (WebSocketDisconnect, RuntimeError):
        return


async def _run_send(controller: ChatController, websocket: WebSocket, payload: dict) -> None:
    try:
        await controller.send_message(payload.get("text", ""), payload.get("images"))
    except (ConflictError, NotFoundError) as exc:
        await websocket.send_json(ws_messages.chat_error(error=exc.message))
    except Exception as exc:
        logger.exception("Send failed for %s", controller.username)
        await websocket.send_json(
            ws_messages.chat_error(error="Failed to process message", details=str(exc))
        )


async def dispatch(
    controller: ChatController,
    websocket: WebSocket,
    payload: dict,
    tasks: set[asyncio.Task],
) -> None:
    """Route one client frame to the controller."""
    action = payload.get("action")
    if action == "list_sessions":
        await controller.list_sessions()
    elif action == "new_chat":
        await controller.new_chat()
    elif action == "select_session":
        await controller.select_session(payload["session_id"])
    elif action == "delete_session":
        await controller.delete_session(payload["session_id"])
    elif action == "attach_file":
        await controller.attach_file(
            payload.get("name", ""), payload.get("kind"), payload.get("text", "")
        )
    elif action == "send":
        task = asyncio.create_task(_run_send(controller, websocket, payload))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    elif action == "stop":
        controller.stop()
    else:
        await websocket.send_json(ws_messages.chat_error(error=f"Unknown action: {action}"))


# ---------------------------------------------------------------------------
# WS /ws/chat
# ---------------------------------------------------------------------------


@router.websocket("/ws/chat")
async def chat_endpoint(
    websocket: WebSocket,
    username: str = Query(default=""),
    first_name: str = Query(default=""),
    last_name: str = Query(default=""),
) -> None:
    """Accept, push the session list, then serve client actions until disconnect."""
    if not username:
        await websocket.close(code=4001, reason="username is required")
        return

    await websocket.accept()
    store = SessionStore(websocket.app.state.db)
    controller = ChatController(
        store, websocket.send_json, username, first_name=first_name, last_name=last_name
    )
    manager = websocket.app.state.connection_manager
    manager.register(controller)

    heartbeat_task = asyncio.create_task(_heartbeat(websocket))
    send_tasks: set[asyncio.Task] = set()

    try:
        await controller.list_sessions()
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(ws_messages.chat_error(error="Invalid JSON frame"))
                continue
            if not isinstance(payload, dict):
                await websocket.send_json(ws_messages.chat_error(error="Invalid frame"))
                continue
            try:
                await dispatch(controller, websocket, payload, send_tasks)
            except (NotFoundError, ConflictError) as exc:
                await websocket.send_json(ws_messages.chat_error(error=exc.message))
            except KeyError as exc:
                await websocket.send_json(
                    ws_messages.chat_error(error=f"Missing field: {exc.args[0]}")
                )
    except WebSocketDisconnect:
        logger.info("Chat socket closed for %s", username)
    finally:
        heartbeat_task.cancel()
        for task in send_tasks:
            task.cancel()
        await asyncio.gather(heartbeat_task, *send_tasks, return_exceptions=True)
        manager.unregister(controller)
