"""Domain exception classes for Channel Chat.

These exceptions are raised by service-layer code and translated into
HTTP error responses by exception handlers registered in ``main.py``.
"""

from __future__ import annotations


class NotFoundError(Exception):
    """Raised when a requested resource does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConflictError(Exception):
    """Raised when an action conflicts with current state (e.g., a turn already streaming)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ImageGenerationError(Exception):
    """Raised when the upstream image endpoint fails or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
