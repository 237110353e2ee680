"""Tests for POST /api/generate-image and GET /health."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from app.exceptions import ImageGenerationError

from .conftest import assert_error_response, assert_success_response


# ---------------------------------------------------------------------------
# POST /api/generate-image
# ---------------------------------------------------------------------------


class TestGenerateImage:
    @pytest.mark.asyncio
    async def test_success_passes_anchor(self, client):
        image = {
            "mimeType": "image/jpeg",
            "data": "QUJD",
            "url": "https://img.example/prompt/cat",
            "fileName": "generated_7.jpg",
        }
        with patch(
            "app.routers.images.image_service.generate_image", AsyncMock(return_value=image)
        ) as fake:
            response = await client.post(
                "/api/generate-image", json={"prompt": "a cat", "anchorImage": "QU5D"}
            )

        assert assert_success_response(response) == image
        fake.assert_awaited_once_with("a cat", "QU5D")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": "   "}])
    async def test_missing_prompt_is_400(self, client, body):
        response = await client.post("/api/generate-image", json=body)

        assert_error_response(response, 400, "Missing prompt")

    @pytest.mark.asyncio
    async def test_upstream_failure_is_502(self, client):
        failure = ImageGenerationError(
            "Image API rejected the request with status: 500", status_code=500
        )
        with patch(
            "app.routers.images.image_service.generate_image", AsyncMock(side_effect=failure)
        ):
            response = await client.post("/api/generate-image", json={"prompt": "a cat"})

        assert_error_response(response, 502, "status: 500")


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")

        body = assert_success_response(response)
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert isinstance(body["connections"], int)
        assert isinstance(body["streaming"], int)
        assert body["uptime_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_degraded_when_database_closed(self):
        import aiosqlite
        from httpx import ASGITransport, AsyncClient

        from app.main import app

        conn = await aiosqlite.connect(":memory:")
        await conn.close()
        app.state.db = conn
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            response = await http.get("/health")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["database"] == "error"
