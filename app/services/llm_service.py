"""LLM service: Gemini client, system instruction, streaming, tool calls.

Encapsulates all Gemini SDK interaction: client setup, the cached system
instruction, history conversion, the streaming (search / code execution)
path and the single non-streaming call used by the tool-calling loop.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Union

import httpx
from google.genai import Client
from google.genai import types

from app.config import get_settings
from app.services import data_tools

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PRIMING_TEMPLATE = "Follow these instructions in every response:\n\n{instruction}"
PRIMING_ACK = "Got it! I'll follow those instructions."
DEFAULT_IMAGE_MIME = "image/png"
PROMPT_FETCH_TIMEOUT = 10.0

CODE_KEYWORDS = (
    "plot",
    "chart",
    "graph",
    "histogram",
    "regression",
    "correlation",
    "python",
    "calculate",
    "compute",
    "scatter",
)

# ---------------------------------------------------------------------------
# Gemini client (module-level singleton)
# ---------------------------------------------------------------------------

settings = get_settings()
client = Client(api_key=settings.gemini_api_key)


# ---------------------------------------------------------------------------
# System instruction
# ---------------------------------------------------------------------------


class SystemInstructionCache:
    """Lazily loaded system instruction, read once from a file or URL.

    Any failure yields the empty string, which disables priming. The value
    stays cached until :meth:`invalidate` is called.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self._value: str | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> str:
        if self._value is not None:
            return self._value
        async with self._lock:
            if self._value is None:
                self._value = await self._load()
        return self._value

    def invalidate(self) -> None:
        self._value = None

    async def _load(self) -> str:
        if not self.source:
            return ""
        try:
            if self.source.startswith(("http://", "https://")):
                async with httpx.AsyncClient(timeout=PROMPT_FETCH_TIMEOUT) as http:
                    response = await http.get(self.source)
                if response.status_code != 200:
                    logger.warning(
                        "System instruction fetch returned %d", response.status_code
                    )
                    return ""
                return response.text.strip()
            text = await asyncio.to_thread(Path(self.source).read_text, encoding="utf-8")
            return text.strip()
        except (OSError, httpx.HTTPError) as exc:
            logger.warning("System instruction unavailable (%s): %s", self.source, exc)
            return ""


system_instruction = SystemInstructionCache(settings.system_prompt_path)


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextEvent:
    """A non-empty chunk of streamed answer text."""

    text: str


@dataclass(frozen=True)
class FullResponseEvent:
    """The assembled structured parts (text, code, result, image)."""

    parts: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class GroundingEvent:
    """Search grounding metadata of the response."""

    data: dict = field(default_factory=dict)


StreamEvent = Union[TextEvent, FullResponseEvent, GroundingEvent]


# ---------------------------------------------------------------------------
# Content builders
# ---------------------------------------------------------------------------


def build_history(history: list[dict], instruction: str = "") -> list[types.Content]:
    """Convert prior ``{role, content}`` turns into Gemini contents.

    In priming mode a non-empty *instruction* is injected as a leading
    user/model exchange instead of being passed as ``system_instruction``.
    """
    contents: list[types.Content] = []
    if instruction and get_settings().system_prompt_as_priming:
        contents.append(
            types.Content(
                role="user",
                parts=[types.Part(text=PRIMING_TEMPLATE.format(instruction=instruction))],
            )
        )
        contents.append(types.Content(role="model", parts=[types.Part(text=PRIMING_ACK)]))

    for msg in history:
        role = "user" if msg.get("role") == "user" else "model"
        contents.append(
            types.Content(role=role, parts=[types.Part(text=msg.get("content") or "")])
        )
    return contents


def build_user_content(text: str, images: list[dict] | None = None) -> types.Content:
    """Build the outgoing user turn: the text part followed by inline images."""
    parts = [types.Part(text=text)]
    for img in images or []:
        parts.append(
            types.Part(
                inline_data=types.Blob(
                    mime_type=img.get("mimeType") or DEFAULT_IMAGE_MIME,
                    data=base64.b64decode(img["data"]),
                )
            )
        )
    return types.Content(role="user", parts=parts)


def _config(instruction: str, tools: list[types.Tool]) -> types.GenerateContentConfig:
    use_system_field = bool(instruction) and not get_settings().system_prompt_as_priming
    return types.GenerateContentConfig(
        system_instruction=instruction if use_system_field else None,
        tools=tools,
    )


def wants_code_execution(text: str) -> bool:
    """Keyword heuristic for switching the streaming path to code execution."""
    lower = (text or "").lower()
    return any(re.search(rf"\b{kw}\b", lower) for kw in CODE_KEYWORDS)


# ---------------------------------------------------------------------------
# stream_chat
# ---------------------------------------------------------------------------


def _to_b64(data: bytes | str) -> str:
    if isinstance(data, bytes):
        return base64.b64encode(data).decode("ascii")
    return data


def _grounding_to_dict(metadata: object) -> dict:
    if isinstance(metadata, dict):
        return metadata
    dump = getattr(metadata, "model_dump", None)
    if callable(dump):
        return dump(mode="json", by_alias=True, exclude_none=True)
    return {}


def _append_text(parts: list[dict], text: str) -> None:
    if parts and parts[-1]["type"] == "text":
        parts[-1]["text"] += text
    else:
        parts.append({"type": "text", "text": text})


async def stream_chat(
    history: list[dict],
    message: str,
    images: list[dict] | None = None,
    use_code_execution: bool = False,
) -> AsyncIterator[StreamEvent]:
    """Stream one model turn as :class:`StreamEvent` objects.

    The streaming path registers exactly one of the search grounding or code
    execution tools. Yields a :class:`TextEvent` per non-empty text chunk,
    then a :class:`FullResponseEvent` if the response carried code, code
    results or images, then a :class:`GroundingEvent` if grounding metadata
    was seen. API errors propagate to the caller.
    """
    instruction = await system_instruction.get()
    contents = build_history(history, instruction)
    contents.append(build_user_content(message, images))

    if use_code_execution:
        tools = [types.Tool(code_execution=types.ToolCodeExecution())]
    else:
        tools = [types.Tool(google_search=types.GoogleSearch())]

    stream = await client.aio.models.generate_content_stream(
        model=get_settings().chat_model,
        contents=contents,
        config=_config(instruction, tools),
    )

    assembled: list[dict] = []
    structured = False
    grounding = None

    async for chunk in stream:
        for candidate in getattr(chunk, "candidates", None) or []:
            if getattr(candidate, "grounding_metadata", None):
                grounding = candidate.grounding_metadata
            content = getattr(candidate, "content", None)
            for part in (content.parts if content else None) or []:
                if getattr(part, "thought", False):
                    continue
                if getattr(part, "text", None):
                    _append_text(assembled, part.text)
                    yield TextEvent(part.text)
                if getattr(part, "executable_code", None) is not None:
                    structured = True
                    code = part.executable_code
                    assembled.append(
                        {
                            "type": "code",
                            "language": str(getattr(code, "language", "") or "PYTHON"),
                            "code": code.code or "",
                        }
                    )
                if getattr(part, "code_execution_result", None) is not None:
                    structured = True
                    outcome = part.code_execution_result
                    assembled.append(
                        {
                            "type": "result",
                            "outcome": str(getattr(outcome, "outcome", "") or ""),
                            "output": outcome.output or "",
                        }
                    )
                if getattr(part, "inline_data", None) is not None:
                    structured = True
                    blob = part.inline_data
                    assembled.append(
                        {
                            "type": "image",
                            "mimeType": blob.mime_type or DEFAULT_IMAGE_MIME,
                            "data": _to_b64(blob.data),
                        }
                    )

    if structured:
        yield FullResponseEvent(parts=assembled)
    if grounding is not None:
        yield GroundingEvent(data=_grounding_to_dict(grounding))


# ---------------------------------------------------------------------------
# Tool-calling requests
# ---------------------------------------------------------------------------


async def generate_with_tools(contents: list[types.Content]):
    """One non-streaming model call with the data tool declarations registered."""
    instruction = await system_instruction.get()
    return await client.aio.models.generate_content(
        model=get_settings().chat_model,
        contents=contents,
        config=_config(instruction, data_tools.TOOLS),
    )


def _response_parts(response) -> list:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or not getattr(candidates[0], "content", None):
        return []
    return candidates[0].content.parts or []


def extract_function_calls(response) -> list[types.FunctionCall]:
    """Return the function calls of the first candidate, in order."""
    return [
        part.function_call
        for part in _response_parts(response)
        if getattr(part, "function_call", None) is not None
    ]


def extract_text(response) -> str:
    """Concatenate the answer text parts of the first candidate."""
    return "".join(
        part.text
        for part in _response_parts(response)
        if getattr(part, "text", None) and not getattr(part, "thought", False)
    )


def response_content(response) -> types.Content:
    """The model turn to append to the conversation before function responses."""
    candidates = getattr(response, "candidates", None) or []
    if candidates and getattr(candidates[0], "content", None):
        return candidates[0].content
    return types.Content(
        role="model",
        parts=[types.Part(function_call=fc) for fc in extract_function_calls(response)],
    )
