"""Caller-level orchestration: create a task, optionally wait, run batches.

The core always raises. ``run_batch(continue_on_fail=True)`` is the one
place where a failure is recorded next to its item instead of propagating.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from taskcore.services.errors import PiAPIError
from taskcore.services.piapi_client import PiAPIClient
from taskcore.services.task_models import Task
from taskcore.services.task_poller import TaskPoller

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskRequest:
    """Creation payload handed over by a capability adapter."""
    model: str
    task_type: str
    input: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] | None = None


@dataclass
class TaskOutcome:
    """Normalized result of one submission."""
    task: Task
    waited: bool
    latency_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.task.to_dict(), "waited": self.waited, "latency_ms": self.latency_ms}


@dataclass
class ItemResult:
    """Per-item batch entry: either an outcome or a recorded failure."""
    index: int
    outcome: TaskOutcome | None = None
    error: str | None = None
    error_type: str | None = None
    task_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.outcome is not None:
            return {"index": self.index, **self.outcome.to_dict()}
        return {
            "index": self.index,
            "task_id": self.task_id,
            "error": self.error,
            "error_type": self.error_type,
        }


async def submit_task(
    client: PiAPIClient,
    poller: TaskPoller,
    request: TaskRequest,
    *,
    wait: bool = True,
    poll_interval: float | None = None,
    max_wait: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> TaskOutcome:
    """Create a task and, if ``wait``, poll it to completion.

    Creation is attempted exactly once; any failure propagates. The wait
    budget counts from just before the creation request.
    """
    start = time.monotonic()
    created_at = poller.now()
    created = await client.create_task(
        request.model,
        request.task_type,
        request.input,
        request.config,
        cancel_event=cancel_event,
    )

    if not wait:
        return TaskOutcome(task=created, waited=False, latency_ms=int((time.monotonic() - start) * 1000))

    task = await poller.wait(
        created.id,
        created_at=created_at,
        interval=poll_interval,
        max_wait=max_wait,
        cancel_event=cancel_event,
    )
    latency = int((time.monotonic() - start) * 1000)
    return TaskOutcome(task=task, waited=True, latency_ms=latency)


async def run_batch(
    client: PiAPIClient,
    poller: TaskPoller,
    requests: Sequence[TaskRequest],
    *,
    continue_on_fail: bool = False,
    wait: bool = True,
    poll_interval: float | None = None,
    max_wait: float | None = None,
    max_concurrency: int = 4,
    cancel_event: asyncio.Event | None = None,
) -> list[ItemResult]:
    """Submit every request as its own flow; results keep input order.

    Without ``continue_on_fail`` the first failure cancels the remaining
    flows and propagates. Tasks already created remotely are not undone.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(index: int, request: TaskRequest) -> ItemResult:
        async with semaphore:
            try:
                outcome = await submit_task(
                    client,
                    poller,
                    request,
                    wait=wait,
                    poll_interval=poll_interval,
                    max_wait=max_wait,
                    cancel_event=cancel_event,
                )
            except PiAPIError as exc:
                if not continue_on_fail:
                    raise
                logger.warning("Batch item %d failed: %s", index, exc)
                return ItemResult(
                    index=index,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    task_id=getattr(exc, "task_id", None),
                )
            return ItemResult(index=index, outcome=outcome)

    flows = [asyncio.ensure_future(_one(i, r)) for i, r in enumerate(requests)]
    if not flows:
        return []

    try:
        done, pending = await asyncio.wait(flows, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for flow in flows:
            flow.cancel()
        raise

    failed = next((f for f in flows if f in done and f.exception() is not None), None)
    if failed is not None:
        for flow in pending:
            flow.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        raise failed.exception()

    return [flow.result() for flow in flows]
