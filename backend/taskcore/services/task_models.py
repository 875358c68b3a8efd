from __future__ import annotations
"""Task snapshot model and the helpers that normalize remote statuses and replies."""

import enum
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Iterator

logger = logging.getLogger(__name__)


class TaskStatus(str, enum.Enum):
    """Canonical task lifecycle statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# Remote vocabulary → canonical status. Keys are lower-cased before lookup.
# Extend here when the service introduces new status strings.
STATUS_ALIASES: dict[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "staged": TaskStatus.PENDING,
    "queued": TaskStatus.PENDING,
    "submitted": TaskStatus.PENDING,
    "created": TaskStatus.PENDING,
    "waiting": TaskStatus.PENDING,
    "processing": TaskStatus.PROCESSING,
    "running": TaskStatus.PROCESSING,
    "in_progress": TaskStatus.PROCESSING,
    "started": TaskStatus.PROCESSING,
    "retry": TaskStatus.PROCESSING,
    "completed": TaskStatus.COMPLETED,
    "success": TaskStatus.COMPLETED,
    "succeeded": TaskStatus.COMPLETED,
    "succeed": TaskStatus.COMPLETED,
    "finished": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "failure": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
    "cancelled": TaskStatus.FAILED,
    "canceled": TaskStatus.FAILED,
}

# Order along pending → processing → terminal; UNKNOWN never outranks a known state.
_RANK = {
    TaskStatus.UNKNOWN: -1,
    TaskStatus.PENDING: 0,
    TaskStatus.PROCESSING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


def normalize_status(raw: Any) -> TaskStatus:
    """Map a remote status string into the closed canonical set."""
    if isinstance(raw, TaskStatus):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return TaskStatus.UNKNOWN
    status = STATUS_ALIASES.get(raw.strip().lower())
    if status is None:
        logger.warning("Unrecognized task status from remote: %r", raw)
        return TaskStatus.UNKNOWN
    return status


def error_message(error: Any) -> str:
    """Pull a human-readable message out of a remote ``data.error`` payload."""
    if not error:
        return "Unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        for key in ("message", "raw_message", "detail"):
            value = error.get(key)
            if value:
                return str(value)
    return str(error)


@dataclass(frozen=True)
class OutboundRequest:
    """A single call to the task API, built fresh per request."""
    method: str
    path: str
    body: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None


@dataclass(frozen=True)
class Task:
    """Most recent local snapshot of a remote task.

    The remote service owns the authoritative copy; this is never persisted.
    """
    id: str
    status: TaskStatus = TaskStatus.PENDING
    result: dict[str, Any] | None = None
    error_detail: str | None = None
    remote_status: str | None = None
    model: str | None = None
    task_type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)
    last_polled_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_data(cls, data: dict[str, Any], *, polled_at: float | None = None) -> "Task":
        """Build a snapshot from the envelope's ``data`` object."""
        task_id = data.get("task_id") or data.get("id")
        if not task_id:
            raise ValueError("Task payload has no task_id")

        raw_status = data.get("status")
        status = normalize_status(raw_status)
        output = data.get("output")
        result = None
        error_detail = None
        if status is TaskStatus.COMPLETED:
            result = output if isinstance(output, dict) else ({} if output is None else {"output": output})
        elif status is TaskStatus.FAILED:
            error_detail = error_message(data.get("error"))

        kwargs: dict[str, Any] = {}
        if polled_at is not None:
            kwargs["last_polled_at"] = polled_at
        return cls(
            id=str(task_id),
            status=status,
            result=result,
            error_detail=error_detail,
            remote_status=raw_status if isinstance(raw_status, str) else None,
            model=data.get("model"),
            task_type=data.get("task_type"),
            data=data,
            **kwargs,
        )

    def advance(self, snapshot: "Task") -> "Task":
        """Merge a fresh snapshot, never moving backwards along the lifecycle.

        A terminal task is returned unchanged; a snapshot that ranks below the
        current status keeps the current status but records the poll time.
        """
        if snapshot.id != self.id:
            raise ValueError(f"Snapshot for {snapshot.id} cannot advance task {self.id}")
        if self.is_terminal:
            return replace(self, last_polled_at=snapshot.last_polled_at)
        if _RANK[snapshot.status] < _RANK[self.status]:
            return replace(
                self,
                remote_status=snapshot.remote_status,
                last_polled_at=snapshot.last_polled_at,
            )
        return replace(snapshot, created_at=self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.id,
            "status": self.status.value,
            "remote_status": self.remote_status,
            "model": self.model,
            "task_type": self.task_type,
            "result": self.result,
            "error": self.error_detail,
        }


def extract_media_url(task: Task) -> tuple[str | None, str | None]:
    """Return ``(url, media_type)`` from a task's output, preferring images."""
    output = task.result or task.data.get("output") or {}
    if not isinstance(output, dict):
        return None, None
    if output.get("image_url"):
        return output["image_url"], "image"
    if output.get("video_url"):
        return output["video_url"], "video"
    return None, None


def infer_task_id(payload: dict[str, Any] | None) -> str | None:
    """Find a task id in a previous response (``data.task_id`` or ``task_id``)."""
    if not payload:
        return None
    data = payload.get("data")
    candidate = (data.get("task_id") if isinstance(data, dict) else None) or payload.get("task_id")
    if isinstance(candidate, str) and candidate.strip():
        return candidate.strip()
    return None


# Chat-completion image replies arrive as an SSE stream of ``data:`` chunks
# whose ``choices[0].delta.content`` pieces form the reply text.
_MARKDOWN_IMAGE = re.compile(r"!\[.*?\]\((.*?)\)")
_JSON_IMAGE_URL = re.compile(r'"image(?:_url|Url|URL)"\s*:\s*"(https?://[^"]+)"')
_IMAGE_URL = re.compile(r"https?://\S+\.(?:png|jpe?g|gif|webp|bmp)", re.IGNORECASE)
_FAILURE_REASON = re.compile(r"Reason: (.*?)(?:\n|$)", re.IGNORECASE)
_FAILURE_SUGGESTION = re.compile(r"Suggestion: (.*?)(?:\n|$)", re.IGNORECASE)


def iter_stream_deltas(raw: str) -> Iterator[str]:
    """Yield the delta content of each parseable ``data:`` chunk."""
    for chunk in raw.split("\n\n"):
        chunk = chunk.strip()
        if not chunk.startswith("data: "):
            continue
        try:
            event = json.loads(chunk[len("data: "):])
        except ValueError:
            # [DONE] marker or a truncated chunk
            continue
        choices = event.get("choices") if isinstance(event, dict) else None
        if not choices or not isinstance(choices[0], dict):
            continue
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            yield content


def stream_content(raw: str) -> str:
    return "".join(iter_stream_deltas(raw))


def generation_failed(content: str) -> bool:
    return "Generation failed" in content or "Failure reason" in content


def failure_details(content: str) -> tuple[str, str]:
    """Return ``(reason, suggestion)`` from a failed generation reply."""
    reason = _FAILURE_REASON.search(content)
    suggestion = _FAILURE_SUGGESTION.search(content)
    return (
        reason.group(1) if reason and reason.group(1) else "Unknown reason",
        suggestion.group(1) if suggestion else "",
    )


def extract_image_url(content: str) -> str | None:
    """Find the generated image URL in a chat reply or its raw stream.

    Tried in order: a markdown image, an ``image_url`` JSON field, any URL
    ending in an image extension, then the same URL search per stream delta.
    """
    for pattern in (_MARKDOWN_IMAGE, _JSON_IMAGE_URL):
        match = pattern.search(content)
        if match:
            return match.group(1)
    match = _IMAGE_URL.search(content)
    if match:
        return match.group(0)
    for delta in iter_stream_deltas(content):
        match = _IMAGE_URL.search(delta)
        if match:
            return match.group(0)
    return None
