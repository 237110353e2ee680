"""Shared fixtures and Gemini mocks for model gateway / orchestrator tests.

Provides:
- ``mock_gemini_client``: Mocked Google GenAI client (async path)
- ``MockPart`` / ``MockChunk`` / ``MockResponse``: simulate SDK objects
- ``make_text_stream``: Factory for text-only streaming responses
- ``make_call_response`` / ``make_text_response``: non-streaming responses
"""

from __future__ import annotations

from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# SDK object mocks
# ---------------------------------------------------------------------------


@dataclass
class MockFunctionCall:
    """Simulates a Gemini FunctionCall."""

    name: str = ""
    args: dict = field(default_factory=dict)
    id: str | None = None


@dataclass
class MockExecutableCode:
    code: str = ""
    language: str = "PYTHON"


@dataclass
class MockCodeResult:
    output: str = ""
    outcome: str = "OUTCOME_OK"


@dataclass
class MockBlob:
    mime_type: str = "image/png"
    data: bytes = b""


@dataclass
class MockPart:
    """Simulates a Gemini Part; exactly one payload field is normally set."""

    text: str | None = None
    function_call: MockFunctionCall | None = None
    executable_code: MockExecutableCode | None = None
    code_execution_result: MockCodeResult | None = None
    inline_data: MockBlob | None = None
    thought: bool = False


@dataclass
class MockContent:
    """Simulates a Gemini Content object."""

    parts: list = field(default_factory=list)
    role: str = "model"


@dataclass
class MockCandidate:
    """Simulates a Gemini response candidate."""

    content: MockContent | None = None
    grounding_metadata: object = None


@dataclass
class MockChunk:
    """A single stream chunk (or a whole non-streaming response)."""

    parts: list = field(default_factory=list)
    grounding_metadata: object = None

    @property
    def candidates(self):
        return [
            MockCandidate(
                content=MockContent(parts=self.parts),
                grounding_metadata=self.grounding_metadata,
            )
        ]


MockResponse = MockChunk


class MockStreamResponse:
    """Async-iterable stand-in for a Gemini streaming response."""

    def __init__(self, chunks: list[MockChunk]):
        self._chunks = chunks

    def __aiter__(self):
        return _AsyncChunkIter(self._chunks)


class _AsyncChunkIter:
    """Async iterator over a list of MockChunk."""

    def __init__(self, chunks: list[MockChunk]):
        self._chunks = chunks
        self._index = 0

    async def __anext__(self):
        if self._index >= len(self._chunks):
            raise StopAsyncIteration
        chunk = self._chunks[self._index]
        self._index += 1
        return chunk


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_text_stream(texts: list[str]) -> MockStreamResponse:
    """Factory: a stream whose chunks each carry one text part."""
    return MockStreamResponse([MockChunk(parts=[MockPart(text=t)]) for t in texts])


def make_text_response(text: str) -> MockResponse:
    return MockResponse(parts=[MockPart(text=text)])


def make_call_response(*calls: tuple[str, dict], text: str | None = None) -> MockResponse:
    """Factory: a response requesting one or more function calls."""
    parts = [MockPart(text=text)] if text else []
    parts.extend(
        MockPart(function_call=MockFunctionCall(name=name, args=args)) for name, args in calls
    )
    return MockResponse(parts=parts)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_gemini_client(monkeypatch):
    """Mocked Google GenAI client (async path: client.aio.models).

    Defaults to a two-chunk text stream and a plain text tool-path response.
    Tests override ``generate_content_stream`` / ``generate_content``.
    """
    mock_client = MagicMock()
    mock_client.aio.models.generate_content_stream = AsyncMock(
        return_value=make_text_stream(["Hello ", "world"])
    )
    mock_client.aio.models.generate_content = AsyncMock(
        return_value=make_text_response("Done.")
    )
    monkeypatch.setattr("app.services.llm_service.client", mock_client)
    return mock_client


@pytest.fixture(autouse=True)
def empty_system_instruction(monkeypatch):
    """Pin the cached system instruction to the empty string."""
    from app.services import llm_service

    cache = llm_service.SystemInstructionCache("")
    monkeypatch.setattr(llm_service, "system_instruction", cache)
    return cache
