"""Pydantic request/response models for the Channel Chat REST API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateSessionRequest(BaseModel):
    """Body for ``POST /api/sessions``."""

    username: str = Field(..., min_length=1)
    agent: str | None = None
    title: str | None = None


class SaveMessageRequest(BaseModel):
    """Body for ``POST /api/messages``.

    Accepts camelCase aliases (``sessionId``, ``toolCalls``) as sent by the
    browser client.
    """

    model_config = {"populate_by_name": True}

    session_id: str = Field(..., alias="sessionId", min_length=1)
    role: Literal["user", "model"]
    content: str = ""
    images: list[dict[str, Any]] | None = None
    charts: list[dict[str, Any]] | None = None
    tool_calls: list[dict[str, Any]] | None = Field(default=None, alias="toolCalls")


class GenerateImageRequest(BaseModel):
    """Body for ``POST /api/generate-image``."""

    prompt: str | None = None
    anchor_image: str | None = Field(default=None, alias="anchorImage")

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdResponse(BaseModel):
    """Response carrying the id of a created record."""

    id: str


class SuccessResponse(BaseModel):
    """Generic ``{"ok": true}`` response."""

    ok: bool = True


class SessionResponse(BaseModel):
    """One row of ``GET /api/sessions``."""

    id: str
    agent: str
    title: str
    createdAt: str
    messageCount: int


class MessageResponse(BaseModel):
    """One row of ``GET /api/messages``."""

    id: str
    role: Literal["user", "model"]
    content: str
    timestamp: str
    images: list[dict[str, Any]] | None = None
    charts: list[dict[str, Any]] | None = None
    toolCalls: list[dict[str, Any]] | None = None


class GeneratedImageResponse(BaseModel):
    """Response of ``POST /api/generate-image``."""

    mimeType: str
    data: str
    url: str
    fileName: str
