"""Cancellable suspension points shared by the request client and the poller.

A flow suspends in two places: waiting on an HTTP response and sleeping
between polls. Both race the awaited work against the same
``asyncio.Event`` so a caller can abort without waiting for the next
natural timeout check.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from taskcore.services.errors import TaskCancelledError

SleepFunc = Callable[[float], Awaitable[Any]]


async def run_cancellable(
    awaitable: Awaitable[Any],
    cancel_event: asyncio.Event | None,
    *,
    task_id: str | None = None,
    path: str | None = None,
) -> Any:
    """Await ``awaitable`` unless ``cancel_event`` fires first.

    Raises TaskCancelledError when the event wins the race; the pending work
    is cancelled before returning.
    """
    if cancel_event is None:
        return await awaitable

    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TaskCancelledError(task_id, path=path)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if work in done:
        waiter.cancel()
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise TaskCancelledError(task_id, path=path)


async def cancellable_sleep(
    delay: float,
    cancel_event: asyncio.Event | None,
    *,
    sleep: SleepFunc = asyncio.sleep,
    task_id: str | None = None,
) -> None:
    """Sleep for ``delay`` seconds, aborting immediately on cancellation."""
    await run_cancellable(sleep(delay), cancel_event, task_id=task_id)
