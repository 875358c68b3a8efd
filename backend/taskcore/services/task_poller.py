from __future__ import annotations
"""Task poller — converge a created task to a terminal state or fail in time.

Loop per task id:
1. GET /api/v1/task/{id} → refresh the snapshot
2. completed → return, failed → raise TaskFailedError
3. budget spent → raise TaskTimeoutError, otherwise sleep and poll again

The ceiling is wall-clock since task creation, not an attempt count. With
maximum wait W and interval I at most ceil(W / I) + 1 polls are made. A slow
status request is cut off once the budget is spent, allowing at least one
interval for the request itself.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable

from taskcore.config import Settings
from taskcore.services.cancellation import SleepFunc, cancellable_sleep
from taskcore.services.errors import (
    HttpStatusError,
    TaskFailedError,
    TaskTimeoutError,
    TransportError,
)
from taskcore.services.piapi_client import TASK_PATH, PiAPIClient
from taskcore.services.task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """Polling cadence and wait budget. The two knobs are independent."""
    interval: float = 3.0
    max_wait: float = 60.0

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError("poll interval must be positive")
        if self.max_wait < 0:
            raise ValueError("max wait must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollPolicy":
        return cls(interval=settings.TASK_POLL_INTERVAL, max_wait=settings.TASK_MAX_WAIT)

    def override(self, interval: float | None = None, max_wait: float | None = None) -> "PollPolicy":
        changes: dict[str, float] = {}
        if interval is not None:
            changes["interval"] = interval
        if max_wait is not None:
            changes["max_wait"] = max_wait
        return replace(self, **changes) if changes else self


class TaskPoller:
    """Polls a PiAPI task until it completes, fails, or runs out of time."""

    def __init__(
        self,
        client: PiAPIClient,
        policy: PollPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.client = client
        self.policy = policy or PollPolicy()
        self._clock = clock
        self._sleep = sleep

    def now(self) -> float:
        """Current value of the clock the wait budget is measured on."""
        return self._clock()

    async def wait(
        self,
        task_id: str,
        *,
        created_at: float | None = None,
        interval: float | None = None,
        max_wait: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Task:
        """Block (cooperatively) until the task is terminal.

        Args:
            task_id: Remote task id returned by task creation.
            created_at: Clock value when the task was created; defaults to now.
            interval: Per-call override of the poll interval.
            max_wait: Per-call override of the wait budget.
            cancel_event: Aborts the wait (during a request or a sleep).

        Returns:
            The completed Task snapshot.

        Raises:
            TaskFailedError: the remote service reported failure.
            TaskTimeoutError: the budget ran out first.
            TaskCancelledError: ``cancel_event`` fired.
            ApplicationError / HttpStatusError: non-recoverable poll error
                (e.g. task not found).
        """
        policy = self.policy.override(interval, max_wait)
        started = created_at if created_at is not None else self._clock()
        task = Task(id=task_id, status=TaskStatus.PENDING, created_at=started)
        attempts = 0

        while True:
            attempts += 1
            # A poll may overrun the budget by at most one interval.
            remaining = policy.max_wait - (self._clock() - started)
            try:
                snapshot = await asyncio.wait_for(
                    self.client.get_task(task_id, cancel_event=cancel_event),
                    timeout=max(remaining, policy.interval),
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Task %s poll %d did not answer before the %.1fs budget ran out",
                    task_id, attempts, policy.max_wait,
                )
                raise TaskTimeoutError(
                    task_id, policy.max_wait, attempts, task.status.value,
                ) from None
            except (TransportError, HttpStatusError) as exc:
                if not exc.retriable:
                    raise
                logger.warning(
                    "Poll %d for task %s failed (%s), will retry within budget",
                    attempts, task_id, exc,
                )
            else:
                task = task.advance(snapshot)
                logger.debug(
                    "Task %s poll %d: status=%s (remote=%s)",
                    task_id, attempts, task.status.value, snapshot.remote_status,
                )
                if task.status is TaskStatus.COMPLETED:
                    logger.info("Task %s completed after %d polls", task_id, attempts)
                    return task
                if task.status is TaskStatus.FAILED:
                    logger.warning("Task %s failed: %s", task_id, task.error_detail)
                    raise TaskFailedError(
                        task_id,
                        task.error_detail or "Unknown error",
                        path=f"{TASK_PATH}/{task_id}",
                        data=task.data,
                    )

            elapsed = self._clock() - started
            remaining = policy.max_wait - elapsed
            if remaining <= 0:
                logger.warning(
                    "Task %s timed out after %.1fs (%d polls, last status=%s)",
                    task_id, elapsed, attempts, task.status.value,
                )
                raise TaskTimeoutError(task_id, policy.max_wait, attempts, task.status.value)

            await cancellable_sleep(
                min(policy.interval, remaining),
                cancel_event,
                sleep=self._sleep,
                task_id=task_id,
            )

    async def wait_for_result(self, task_id: str, **kwargs: Any) -> dict[str, Any]:
        """Like ``wait`` but return only the completed task's result payload."""
        task = await self.wait(task_id, **kwargs)
        return task.result or {}
