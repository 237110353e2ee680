"""Chat service: per-connection session and streaming controller.

Owns the session list, the active session id, the in-memory message list
and the loaded dataset of one WebSocket connection. Routes each user turn
to either the plain streaming path or the tool-calling loop, merges the
resulting events into a single model message and persists exactly one user
and one model message per turn.
"""

from __future__ import annotations

import enum
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import uuid4

from app.config import get_settings
from app.exceptions import ConflictError
from app.services import data_tools, llm_service, tool_orchestrator
from app.services import ws_messages
from app.services.session_store import SessionStore
from app.services.tabular_loader import DatasetContext, detect_kind, load_dataset

logger = logging.getLogger(__name__)

NEW_SESSION_ID = "new"
IMAGE_REQUEST_RE = re.compile(
    r"\b(generate|create|make|design)\b.*\b(image|poster|thumbnail|visual|cover|art)\b",
    re.IGNORECASE,
)

SendFn = Callable[[dict], Awaitable[None]]


class SessionState(enum.Enum):
    """Lifecycle of the active session id.

    ``NEW`` is the unsaved sentinel session, ``CREATING`` covers the lazy
    creation during the first send, ``ACTIVE`` is a persisted session.
    """

    NEW = "new"
    CREATING = "creating"
    ACTIVE = "active"


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


def chat_title(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"Chat · {now:%b} {now.day} {now:%H:%M}"


def message_text(msg: dict) -> str:
    """Plain text of a message: its content, else the text of its parts."""
    if msg.get("content"):
        return msg["content"]
    return "\n".join(p.get("text", "") for p in msg.get("parts") or [] if p.get("type") == "text")


def wants_tools(text: str, dataset: DatasetContext | None) -> bool:
    """Tool path when a dataset is loaded or the text asks for an image."""
    return dataset is not None or bool(IMAGE_REQUEST_RE.search(text or ""))


class ChatController:
    """Session lifecycle and turn handling for one connected user."""

    def __init__(
        self,
        store: SessionStore,
        send: SendFn,
        username: str,
        first_name: str = "",
        last_name: str = "",
    ) -> None:
        self.store = store
        self._send = send
        self.username = username
        self.first_name = first_name
        self.last_name = last_name

        self.sessions: list[dict] = []
        self.active_session_id = NEW_SESSION_ID
        self.state = SessionState.NEW
        self.messages: list[dict] = []
        self._creating_session_id: str | None = None

        self.dataset: DatasetContext | None = None
        self.pending_attachment: DatasetContext | None = None

        self._streaming = False
        self._cancelled = False

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def list_sessions(self) -> list[dict]:
        self.sessions = await self.store.get_sessions(self.username)
        await self._send(
            ws_messages.session_list(
                sessions=self.sessions, active_session_id=self.active_session_id
            )
        )
        return self.sessions

    async def new_chat(self) -> None:
        self._reject_while_creating()
        self._clear_dataset()
        await self._set_active_session(NEW_SESSION_ID)

    async def select_session(self, session_id: str) -> list[dict]:
        if session_id == self.active_session_id:
            return self.messages
        self._reject_while_creating()
        self._clear_dataset()
        await self._set_active_session(session_id)
        return self.messages

    async def delete_session(self, session_id: str) -> str:
        """Delete *session_id*; returns the session id active afterwards.

        Raises:
            NotFoundError: If the session does not exist.
        """
        await self.store.delete_session(session_id)
        self.sessions = [s for s in self.sessions if s["id"] != session_id]
        if self.active_session_id == session_id:
            fallback = self.sessions[0]["id"] if self.sessions else NEW_SESSION_ID
            await self._set_active_session(fallback)
        await self._send(
            ws_messages.session_deleted(
                session_id=session_id, active_session_id=self.active_session_id
            )
        )
        return self.active_session_id

    def _reject_while_creating(self) -> None:
        if self.state is SessionState.CREATING:
            raise ConflictError("A new session is still being created")

    async def _set_active_session(self, session_id: str) -> None:
        self.active_session_id = session_id
        await self._on_active_session_changed()

    async def _on_active_session_changed(self) -> None:
        if (
            self.state is SessionState.CREATING
            and self.active_session_id == self._creating_session_id
        ):
            # Lazily created mid-send: the in-flight messages are the history
            self._creating_session_id = None
            self.state = SessionState.ACTIVE
            return

        self.messages = []
        if self.active_session_id == NEW_SESSION_ID:
            self.state = SessionState.NEW
        else:
            self.state = SessionState.ACTIVE
            self.messages = await self.store.load_messages(self.active_session_id)
        await self._send(
            ws_messages.session_selected(
                session_id=self.active_session_id, messages=self.messages
            )
        )

    async def _ensure_session(self) -> str:
        if self.active_session_id != NEW_SESSION_ID:
            return self.active_session_id

        agent = get_settings().default_agent
        title = chat_title()
        self.state = SessionState.CREATING
        try:
            created = await self.store.create_session(self.username, agent, title)
        except Exception:
            self.state = SessionState.NEW
            raise

        session = {
            "id": created["id"],
            "agent": agent,
            "title": title,
            "createdAt": _now(),
            "messageCount": 0,
        }
        self.sessions.insert(0, session)
        self._creating_session_id = created["id"]
        await self._set_active_session(created["id"])
        await self._send(ws_messages.session_created(session=session))
        return created["id"]

    # -----------------------------------------------------------------------
    # Attachments
    # -----------------------------------------------------------------------

    def _clear_dataset(self) -> None:
        self.dataset = None
        self.pending_attachment = None

    async def attach_file(self, name: str, kind: str | None, text: str) -> dict | None:
        """Load a CSV/JSON attachment, replacing any previous dataset."""
        kind = kind or detect_kind(name)
        if kind not in ("csv", "json"):
            await self._send(
                ws_messages.attachment_error(name=name, error="Unsupported file type")
            )
            return None

        context = load_dataset(name, text, kind)
        if context is None:
            await self._send(
                ws_messages.attachment_error(
                    name=name, error=f"Could not read {name} as tabular {kind.upper()} data"
                )
            )
            return None

        self.dataset = context
        self.pending_attachment = context
        logger.info("Loaded %s attachment %s (%d rows)", kind, name, context.row_count)
        await self._send(
            ws_messages.attachment_loaded(
                name=name,
                kind=kind,
                row_count=context.row_count,
                headers=context.headers,
                summary=context.summary,
            )
        )
        return {
            "name": name,
            "kind": kind,
            "rowCount": context.row_count,
            "headers": context.headers,
        }

    # -----------------------------------------------------------------------
    # Prompt composition
    # -----------------------------------------------------------------------

    def compose_prompt(
        self,
        text: str,
        images: list[dict],
        attachment: DatasetContext | None,
    ) -> str:
        name_context = ""
        if self.first_name or self.last_name:
            name_context = f"[User: {self.first_name} {self.last_name}]\n\n"

        is_json = attachment is not None and attachment.kind == "json"
        if attachment is not None:
            file_label, row_label, col_label = (
                ("JSON", "items", "Fields") if is_json else ("CSV", "rows", "Columns")
            )
            slim_block = ""
            if not is_json and attachment.slim_csv:
                slim_block = f"\n\nFull dataset (key columns):\n```csv\n{attachment.slim_csv}\n```"
            prefix = (
                f'[{file_label} File: "{attachment.name}" | {attachment.row_count} {row_label} | '
                f"{col_label}: {', '.join(attachment.headers)}]\n\n"
                f"{attachment.summary}{slim_block}\n\n---\n\n"
            )
        elif self.dataset is not None and self.dataset.summary:
            prefix = (
                f"[Data columns: {', '.join(self.dataset.headers)}]\n\n"
                f"{self.dataset.summary}\n\n---\n\n"
            )
        else:
            prefix = ""

        if text:
            body = text
        elif images:
            body = "What do you see in this image?"
        else:
            body = "Please analyze this JSON data." if is_json else "Please analyze this CSV data."
        return name_context + prefix + body

    # -----------------------------------------------------------------------
    # send_message
    # -----------------------------------------------------------------------

    def stop(self) -> None:
        """Request cooperative cancellation of the streaming turn."""
        if self._streaming:
            self._cancelled = True

    async def send_message(self, text: str, images: list[dict] | None = None) -> dict | None:
        """Run one user turn and return the persisted model message.

        Returns ``None`` when there is nothing to send.

        Raises:
            ConflictError: If a turn is already in progress on this connection.
        """
        if self._streaming:
            raise ConflictError("A response is already being generated")

        text = (text or "").strip()
        images = list(images or [])
        attachment = self.pending_attachment
        if not text and not images and attachment is None:
            return None

        self._streaming = True
        self._cancelled = False
        try:
            return await self._run_turn(text, images, attachment)
        finally:
            self._streaming = False

    async def _run_turn(
        self,
        text: str,
        images: list[dict],
        attachment: DatasetContext | None,
    ) -> dict:
        session_id = await self._ensure_session()

        use_tools = wants_tools(text, self.dataset)
        prompt = self.compose_prompt(text, images, attachment)
        is_json = attachment is not None and attachment.kind == "json"
        display = text or (
            "(Image)" if images else ("(JSON attached)" if is_json else "(CSV attached)")
        )

        history = [
            {"role": m["role"], "content": message_text(m)}
            for m in self.messages
            if m.get("role") in ("user", "model")
        ]

        user_msg: dict = {"id": f"u-{uuid4()}", "role": "user", "content": display, "timestamp": _now()}
        if images:
            user_msg["images"] = images
        if attachment is not None:
            user_msg["csvName"] = attachment.name
        self.messages.append(user_msg)
        self.pending_attachment = None

        await self.store.save_message(session_id, "user", display, images or None)

        model_msg: dict = {"id": f"a-{uuid4()}", "role": "model", "content": "", "timestamp": _now()}
        self.messages.append(model_msg)
        await self._send(ws_messages.message_started(user_message=user_msg, message_id=model_msg["id"]))

        try:
            if use_tools:
                await self._run_tools(model_msg, history, prompt, images)
            else:
                await self._run_stream(model_msg, history, prompt, images, text)
        except Exception as exc:
            logger.exception("Model call failed for session %s", session_id)
            model_msg["content"] = f"Error: {exc}"
            model_msg.pop("parts", None)
            await self._send(ws_messages.chat_error(error=str(exc)))

        parts = model_msg.get("parts")
        saved_content = (
            "\n".join(p["text"] for p in parts if p.get("type") == "text")
            if parts
            else model_msg["content"]
        )
        await self.store.save_message(
            session_id,
            "model",
            saved_content,
            None,
            model_msg.get("charts"),
            model_msg.get("toolCalls"),
        )

        for session in self.sessions:
            if session["id"] == session_id:
                session["messageCount"] += 2

        await self._send(
            ws_messages.chat_complete(
                message_id=model_msg["id"],
                content=saved_content,
                cancelled=self._cancelled,
            )
        )
        return model_msg

    async def _run_stream(
        self,
        model_msg: dict,
        history: list[dict],
        prompt: str,
        images: list[dict],
        text: str,
    ) -> None:
        use_code = get_settings().enable_code_execution and llm_service.wants_code_execution(text)
        async for event in llm_service.stream_chat(history, prompt, images, use_code):
            if self._cancelled:
                logger.info("Stream cancelled for message %s", model_msg["id"])
                break
            if isinstance(event, llm_service.TextEvent):
                model_msg["content"] += event.text
                await self._send(ws_messages.chat_token(token=event.text, message_id=model_msg["id"]))
            elif isinstance(event, llm_service.FullResponseEvent):
                model_msg["content"] = ""
                model_msg["parts"] = event.parts
                await self._send(ws_messages.message_parts(message_id=model_msg["id"], parts=event.parts))
            elif isinstance(event, llm_service.GroundingEvent):
                model_msg["grounding"] = event.data
                await self._send(
                    ws_messages.message_grounding(message_id=model_msg["id"], grounding=event.data)
                )

    async def _run_tools(
        self,
        model_msg: dict,
        history: list[dict],
        prompt: str,
        images: list[dict],
    ) -> None:
        dataset = self.dataset
        rows = dataset.rows if dataset is not None else []
        context = {"anchor_image": images[0].get("data") if images else None}

        async def execute(tool_name: str, args: dict) -> dict:
            return await data_tools.execute(tool_name, args, rows, context)

        result = await tool_orchestrator.run_tool_loop(
            history,
            prompt,
            images,
            execute,
            headers=dataset.headers if dataset is not None else None,
        )
        model_msg["content"] = result.text
        if result.charts:
            model_msg["charts"] = result.charts
        if result.tool_calls:
            model_msg["toolCalls"] = result.tool_calls
        await self._send(ws_messages.chat_token(token=result.text, message_id=model_msg["id"]))
        if result.charts or result.tool_calls:
            await self._send(
                ws_messages.tool_result(
                    message_id=model_msg["id"],
                    charts=result.charts,
                    tool_calls=result.tool_calls,
                )
            )
