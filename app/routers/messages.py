"""Messages router -- append to and read a session's history.

Endpoints:
- POST /api/messages              -> append a message to a session
- GET /api/messages?session_id=   -> messages of a session in insertion order
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_store
from app.models import IdResponse, MessageResponse, SaveMessageRequest
from app.services.session_store import SessionStore

router = APIRouter()


@router.post("", status_code=201, response_model=IdResponse)
async def save_message(
    body: SaveMessageRequest,
    store: SessionStore = Depends(get_store),
) -> dict:
    return await store.save_message(
        body.session_id,
        body.role,
        body.content,
        body.images,
        body.charts,
        body.tool_calls,
    )


@router.get("", response_model=list[MessageResponse], response_model_exclude_none=True)
async def load_messages(
    session_id: str = Query(..., alias="session_id", min_length=1),
    store: SessionStore = Depends(get_store),
) -> list[dict]:
    return await store.load_messages(session_id)
