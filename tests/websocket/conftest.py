"""WebSocket test configuration.

Creates a minimal FastAPI test app that only mounts the WebSocket router,
bound to the shared in-memory ``fresh_db`` and a fresh ConnectionManager.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from app.routers.websocket import router as ws_router
from app.services.connection_manager import ConnectionManager


def create_test_app() -> FastAPI:
    """Build a minimal FastAPI app with only the WebSocket router."""
    test_app = FastAPI()
    test_app.include_router(ws_router)
    return test_app


@pytest.fixture
def ws_app(fresh_db):
    app = create_test_app()
    app.state.db = fresh_db
    app.state.connection_manager = ConnectionManager()
    return app


@pytest.fixture
def ws_client(ws_app):
    """Starlette TestClient for synchronous WebSocket testing."""
    return TestClient(ws_app)
