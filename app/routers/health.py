"""Health check endpoint -- no auth required."""

from __future__ import annotations

import logging
import time

import aiosqlite
from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()

_start_time = time.monotonic()


@router.get("")
async def health_check(request: Request):
    """Return system health status."""
    uptime = time.monotonic() - _start_time

    db_status = "ok"
    try:
        await request.app.state.db.execute("SELECT 1")
    except (aiosqlite.Error, AttributeError, ValueError) as exc:
        logger.warning("Health check database probe failed: %s", exc)
        db_status = "error"

    manager = getattr(request.app.state, "connection_manager", None)
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
        "connections": manager.connection_count if manager else 0,
        "streaming": manager.streaming_count if manager else 0,
        "version": "1.0.0",
    }
