from __future__ import annotations
"""Celery job that runs a full submit-and-wait flow in a worker.

The job:
1. Takes a Redis SETNX lock on the caller's idempotency key
2. Creates the PiAPI task (never retried)
3. Polls it to a terminal state
4. Publishes status updates via Redis Pub/Sub
"""

import logging
from typing import Any

from celery import shared_task

from taskcore.config import get_settings
from taskcore.services.errors import PiAPIError, TaskTimeoutError
from taskcore.services.piapi_client import ClientConfig, PiAPIClient
from taskcore.services.pubsub import get_redis, publish_task_update
from taskcore.services.task_poller import PollPolicy, TaskPoller
from taskcore.services.task_runner import TaskRequest, submit_task
from taskcore.tasks import run_async

logger = logging.getLogger(__name__)

LOCK_PREFIX = "piapi_submit_lock:"


def _build_client(api_key: str | None) -> PiAPIClient:
    settings = get_settings()
    config = ClientConfig.from_settings(settings)
    if api_key:
        return PiAPIClient(config, credentials=lambda: api_key)
    return PiAPIClient(config)


async def _submit_and_wait(
    request: TaskRequest,
    api_key: str | None,
    poll_interval: float | None,
    max_wait: float | None,
) -> dict[str, Any]:
    async with _build_client(api_key) as client:
        poller = TaskPoller(client, PollPolicy.from_settings(get_settings()))
        outcome = await submit_task(
            client,
            poller,
            request,
            wait=True,
            poll_interval=poll_interval,
            max_wait=max_wait,
        )
    return outcome.to_dict()


@shared_task(bind=True, max_retries=0)
def submit_and_wait(
    self,
    model: str,
    task_type: str,
    task_input: dict[str, Any],
    config: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    poll_interval: float | None = None,
    max_wait: float | None = None,
    api_key: str | None = None,
):
    """Create a PiAPI task and wait for it in the background.

    A second job with the same ``idempotency_key`` is refused while the lock
    is held. The lock is released on success and on failure, but kept on a
    timeout because the remote task may still be running.
    """
    settings = get_settings()
    redis_client = get_redis() if idempotency_key else None
    lock_key = f"{LOCK_PREFIX}{idempotency_key}"

    if redis_client is not None and not redis_client.set(lock_key, "1", ex=settings.TASK_LOCK_TTL, nx=True):
        logger.warning("Duplicate submission blocked for key %s", idempotency_key)
        return {"status": "duplicate_blocked", "idempotency_key": idempotency_key}

    request = TaskRequest(model=model, task_type=task_type, input=task_input, config=config)
    try:
        result = run_async(_submit_and_wait(request, api_key, poll_interval, max_wait))
    except TaskTimeoutError as exc:
        logger.error("Background task %s timed out: %s", exc.task_id, exc)
        publish_task_update(exc.task_id, "timed_out")
        return {
            "status": "timed_out",
            "task_id": exc.task_id,
            "error": str(exc),
            "error_type": type(exc).__name__,
        }
    except PiAPIError as exc:
        task_id = getattr(exc, "task_id", None)
        logger.error("Background submission failed (model=%s): %s", model, exc)
        if task_id:
            publish_task_update(task_id, "failed", error=str(exc))
        if redis_client is not None:
            redis_client.delete(lock_key)
        return {
            "status": "error",
            "task_id": task_id,
            "error": str(exc),
            "error_type": type(exc).__name__,
        }
    except Exception:
        if redis_client is not None:
            redis_client.delete(lock_key)
        raise

    publish_task_update(result["task_id"], result["status"])
    if redis_client is not None:
        redis_client.delete(lock_key)
    logger.info("Background task %s finished: %s", result["task_id"], result["status"])
    return result
