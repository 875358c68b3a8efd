"""Redis Pub/Sub notifications for task status changes.

Celery workers publish a message per status change on a per-task channel
so other processes can follow a background submission.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis

from taskcore.config import get_settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "piapi:task:"

_sync_pool: redis.ConnectionPool | None = None


def _get_sync_pool() -> redis.ConnectionPool:
    """Lazy-init a module-level sync Redis ConnectionPool."""
    global _sync_pool
    if _sync_pool is None:
        settings = get_settings()
        _sync_pool = redis.ConnectionPool.from_url(settings.REDIS_URL)
    return _sync_pool


def get_redis() -> redis.Redis:
    return redis.Redis(connection_pool=_get_sync_pool())


def publish_task_update(task_id: str, status: str, **extra: Any) -> None:
    """Publish a task status update from a Celery worker (sync context)."""
    _publish_sync(task_id, {"type": "task_update", "task_id": task_id, "status": status, **extra})


def _publish_sync(task_id: str, message: dict[str, Any]) -> None:
    """Publish to the task's channel. Best-effort: a Redis outage never fails the job."""
    try:
        channel = f"{CHANNEL_PREFIX}{task_id}"
        get_redis().publish(channel, json.dumps(message))
    except redis.RedisError:
        logger.warning("Failed to publish update for task %s", task_id, exc_info=True)
