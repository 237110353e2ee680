"""Tests for app.main -- lifespan, middleware stack, error mapping, routers."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import APIRouter

from app.exceptions import ConflictError, NotFoundError
from app.main import app
from app.services.connection_manager import ConnectionManager

ALLOWED_ORIGIN = "http://localhost:3000"


def _mock_pool():
    pool = AsyncMock()
    pool.initialize = AsyncMock()
    pool.get_write_connection = MagicMock(return_value=AsyncMock())
    pool.close = AsyncMock()
    return pool


def _temporary_route(path: str, exc: Exception) -> None:
    router = APIRouter()

    @router.get(path)
    async def raise_error():
        raise exc

    app.include_router(router)


def _drop_route(path: str) -> None:
    app.routes[:] = [r for r in app.routes if getattr(r, "path", None) != path]


# =========================================================================
# Lifespan
# =========================================================================


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self):
        pool = _mock_pool()
        pool_class = MagicMock(return_value=pool)

        with patch("app.main.DatabasePool", pool_class):
            from app.main import lifespan

            async with lifespan(app):
                pool.initialize.assert_awaited_once()
                assert app.state.db_pool is pool
                assert app.state.db is pool.get_write_connection.return_value
                assert isinstance(app.state.connection_manager, ConnectionManager)

            pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sqlite_url_prefix_stripped(self):
        pool_class = MagicMock(return_value=_mock_pool())

        with patch("app.main.DatabasePool", pool_class):
            from app.main import lifespan

            async with lifespan(app):
                pass

        db_path = pool_class.call_args.args[0]
        assert not db_path.startswith("sqlite:///")


# =========================================================================
# Middleware
# =========================================================================


class TestCors:
    @pytest.mark.asyncio
    async def test_allowed_origin(self, client):
        response = await client.get("/health", headers={"Origin": ALLOWED_ORIGIN})

        assert response.headers.get("access-control-allow-origin") == ALLOWED_ORIGIN
        assert response.headers.get("access-control-allow-credentials") == "true"

    @pytest.mark.asyncio
    async def test_disallowed_origin(self, client):
        response = await client.get("/health", headers={"Origin": "http://evil.com"})

        assert response.headers.get("access-control-allow-origin") != "http://evil.com"


class TestRequestLogging:
    @pytest.mark.asyncio
    async def test_method_path_status_and_duration_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="app.main"):
            await client.get("/api/sessions", params={"username": "alice"})

        messages = [r.message for r in caplog.records if r.name == "app.main"]
        assert any(
            "GET /api/sessions 200" in msg and msg.endswith("ms") for msg in messages
        ), messages


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_unhandled_exception_is_500_json(self, client, caplog):
        _temporary_route("/_test_500", RuntimeError("Unexpected failure"))
        try:
            with caplog.at_level(logging.ERROR):
                response = await client.get("/_test_500")
        finally:
            _drop_route("/_test_500")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"
        assert any("Unexpected failure" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_conflict_is_409(self, client):
        _temporary_route("/_test_409", ConflictError("A response is already being generated"))
        try:
            response = await client.get("/_test_409")
        finally:
            _drop_route("/_test_409")

        assert response.status_code == 409
        assert response.json() == {"error": "A response is already being generated"}

    @pytest.mark.asyncio
    async def test_not_found_is_404(self, client):
        _temporary_route("/_test_404", NotFoundError("Session not found"))
        try:
            response = await client.get("/_test_404")
        finally:
            _drop_route("/_test_404")

        assert response.status_code == 404
        assert response.json() == {"error": "Session not found"}


# =========================================================================
# Router mounting
# =========================================================================


def test_routes_mounted():
    paths = {getattr(r, "path", None) for r in app.routes}

    assert {
        "/api/sessions",
        "/api/sessions/{session_id}",
        "/api/messages",
        "/api/generate-image",
        "/health",
        "/ws/chat",
    } <= paths
