"""System API — liveness and effective configuration."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from taskcore.config import get_settings
from taskcore.services.piapi_client import mask_key

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    settings = get_settings()
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "piapi_base_url": settings.PIAPI_BASE_URL,
        "api_key": mask_key(settings.PIAPI_API_KEY) if settings.PIAPI_API_KEY else None,
        "poll_interval": settings.TASK_POLL_INTERVAL,
        "max_wait": settings.TASK_MAX_WAIT,
    }
