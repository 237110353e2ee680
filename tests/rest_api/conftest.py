"""Fixtures for REST API endpoint tests.

The shared ``client`` fixture (``tests/conftest.py``) already binds the app
to ``fresh_db``; this module adds response assertion helpers.
"""

from __future__ import annotations


def assert_error_response(response, status_code, error_substring=None):
    """Assert an ``{"error": ...}`` body with the given status."""
    assert response.status_code == status_code, response.text
    body = response.json()
    assert "error" in body
    if error_substring is not None:
        assert error_substring in str(body["error"])
    return body


def assert_success_response(response, status_code=200):
    assert response.status_code == status_code, response.text
    return response.json()
