"""Celery application configuration."""

import asyncio
import threading

from celery import Celery

from taskcore.config import get_settings

settings = get_settings()

celery_app = Celery(
    "piapi_taskcore",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "taskcore.tasks.task_jobs",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=False,               # a redelivered job would create a second billable task
    worker_prefetch_multiplier=1,       # Fetch one job at a time per worker
)

# Thread-local storage for event loop reuse within Celery workers
_thread_local = threading.local()


def run_async(coro):
    """Run async code in a sync Celery task.

    Reuses a thread-local event loop rather than creating and closing a new
    loop for every job.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _thread_local.loop = loop
    return loop.run_until_complete(coro)
