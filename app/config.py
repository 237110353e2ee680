"""Application configuration loaded from environment variables."""

from __future__ import annotations

import functools

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Channel Chat backend settings.

    Required fields must be set via environment variables (or ``.env`` file).
    Optional fields have sensible defaults.
    """

    # Required
    gemini_api_key: str

    # Optional with defaults
    database_url: str = "sqlite:///chatapp.db"
    cors_origins: str = "http://localhost:3000"
    chat_model: str = "gemini-2.5-flash"
    system_prompt_path: str = "prompt_chat.txt"
    system_prompt_as_priming: bool = True
    enable_code_execution: bool = False
    image_api_url: str = "https://image.pollinations.ai/prompt"
    image_size: int = 1024
    image_timeout_seconds: float = 60.0
    default_agent: str = "lisa"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@functools.lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance (singleton)."""
    return Settings()
