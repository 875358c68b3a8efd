from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """PiAPI task core settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "PiAPI Task Core"
    DEBUG: bool = False

    # --- PiAPI ---
    PIAPI_BASE_URL: str = "https://api.piapi.ai"
    PIAPI_API_KEY: str = ""
    PIAPI_API_KEY_HEADER: str = "x-api-key"
    PIAPI_HTTP_TIMEOUT: float = 30.0

    # --- Polling ---
    TASK_POLL_INTERVAL: float = 3.0
    TASK_MAX_WAIT: float = 60.0  # 20 polls x 3s

    # --- Redis (Celery broker + duplicate-submit lock) ---
    REDIS_URL: str = "redis://localhost:6379/0"
    TASK_LOCK_TTL: int = 900

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
