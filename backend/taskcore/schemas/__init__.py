"""Pydantic v2 schemas package."""

from taskcore.schemas.task import (
    BackgroundTaskCreate,
    BatchTaskCreate,
    TaskCreate,
    TaskItem,
    TaskLookup,
    TaskRead,
)

__all__ = [
    "BackgroundTaskCreate",
    "BatchTaskCreate",
    "TaskCreate",
    "TaskItem",
    "TaskLookup",
    "TaskRead",
]
