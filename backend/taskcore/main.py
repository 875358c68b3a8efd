from __future__ import annotations
"""PiAPI Task Core — FastAPI application entry point.

Mounts the API routes, maps the PiAPI failure taxonomy onto HTTP
responses, and closes the shared connection pool on shutdown.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskcore.api.router import api_router
from taskcore.config import get_settings
from taskcore.services.errors import (
    ApplicationError,
    HttpStatusError,
    PiAPIError,
    TaskCancelledError,
    TaskTimeoutError,
    TransportError,
)
from taskcore.services.piapi_client import close_shared_http_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: release the shared HTTP pool on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    logger.info("PiAPI base URL: %s", settings.PIAPI_BASE_URL)
    logger.info(
        "Polling: interval=%.1fs max_wait=%.1fs",
        settings.TASK_POLL_INTERVAL, settings.TASK_MAX_WAIT,
    )

    yield

    await close_shared_http_client()
    logger.info("%s shut down", settings.APP_NAME)


def _status_for(exc: PiAPIError) -> int:
    if isinstance(exc, TaskTimeoutError):
        return 504
    if isinstance(exc, TaskCancelledError):
        return 499
    if isinstance(exc, TransportError):
        return 503
    if isinstance(exc, (HttpStatusError, ApplicationError)):
        return 502
    return 500


app = FastAPI(
    title=settings.APP_NAME,
    description="Submit PiAPI generation tasks and wait for their results",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(PiAPIError)
async def piapi_error_handler(request: Request, exc: PiAPIError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.warning(
        "%s %s → %d (%s: %s)",
        request.method, request.url.path, status_code, type(exc).__name__, exc,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": type(exc).__name__,
            "path": exc.path,
            "task_id": getattr(exc, "task_id", None),
            "retriable": exc.retriable,
        },
    )


app.include_router(api_router)
