"""Sessions router -- list, create and delete chat sessions.

Endpoints:
- GET /api/sessions?username=   -> sessions of a user, newest first
- POST /api/sessions            -> create a session
- DELETE /api/sessions/{id}     -> delete a session and its messages
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.config import get_settings
from app.dependencies import get_store
from app.models import CreateSessionRequest, IdResponse, SessionResponse, SuccessResponse
from app.services.session_store import SessionStore

router = APIRouter()


@router.get("", response_model=list[SessionResponse])
async def list_sessions(
    username: str = Query(..., min_length=1),
    store: SessionStore = Depends(get_store),
) -> list[dict]:
    return await store.get_sessions(username)


@router.post("", status_code=201, response_model=IdResponse)
async def create_session(
    body: CreateSessionRequest,
    store: SessionStore = Depends(get_store),
) -> dict:
    agent = body.agent or get_settings().default_agent
    return await store.create_session(body.username, agent, body.title or "New Chat")


@router.delete("/{session_id}", response_model=SuccessResponse)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> SuccessResponse:
    """Delete a session; 404 if it does not exist."""
    await store.delete_session(session_id)
    return SuccessResponse()
