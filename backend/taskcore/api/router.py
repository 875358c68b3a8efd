from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from taskcore.api.system import router as system_router
from taskcore.api.tasks import router as tasks_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(tasks_router, prefix="/tasks", tags=["Tasks"])
api_router.include_router(system_router, prefix="/system", tags=["System"])
