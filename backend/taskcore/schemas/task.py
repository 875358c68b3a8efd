from __future__ import annotations
"""Pydantic v2 schemas for the task endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from taskcore.services.task_runner import TaskRequest


class TaskCreate(BaseModel):
    """Schema for creating a single PiAPI task."""

    model: str
    task_type: str
    input: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] | None = None
    wait: bool = True
    poll_interval: float | None = Field(default=None, gt=0)
    max_wait: float | None = Field(default=None, ge=0)

    def to_request(self) -> TaskRequest:
        return TaskRequest(
            model=self.model,
            task_type=self.task_type,
            input=self.input,
            config=self.config,
        )


class TaskItem(BaseModel):
    """One item of a batch submission."""

    model: str
    task_type: str
    input: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] | None = None

    def to_request(self) -> TaskRequest:
        return TaskRequest(
            model=self.model,
            task_type=self.task_type,
            input=self.input,
            config=self.config,
        )


class BatchTaskCreate(BaseModel):
    """Schema for submitting several tasks at once."""

    items: list[TaskItem]
    continue_on_fail: bool = False
    wait: bool = True
    poll_interval: float | None = Field(default=None, gt=0)
    max_wait: float | None = Field(default=None, ge=0)
    max_concurrency: int = Field(default=4, ge=1, le=32)


class BackgroundTaskCreate(TaskCreate):
    """Schema for dispatching a submit-and-wait job to a Celery worker."""

    idempotency_key: str | None = None


class TaskLookup(BaseModel):
    """Status lookup; the id may be inferred from a previous response."""

    task_id: str | None = None
    previous: dict[str, Any] | None = None
    media_only: bool = False


class TaskRead(BaseModel):
    """Normalized task snapshot."""

    task_id: str
    status: str
    remote_status: str | None = None
    model: str | None = None
    task_type: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    waited: bool | None = None
    latency_ms: int | None = None
    media_url: str | None = None
    media_type: str | None = None
