"""Task API — create PiAPI tasks, wait for them, and look up their status."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException

from taskcore.config import get_settings
from taskcore.schemas.task import (
    BackgroundTaskCreate,
    BatchTaskCreate,
    TaskCreate,
    TaskLookup,
    TaskRead,
)
from taskcore.services.piapi_client import ClientConfig, PiAPIClient, get_shared_http_client
from taskcore.services.task_models import extract_media_url, infer_task_id
from taskcore.services.task_poller import PollPolicy, TaskPoller
from taskcore.services.task_runner import run_batch, submit_task

logger = logging.getLogger(__name__)

router = APIRouter()


def get_piapi_client(x_api_key: str | None = Header(default=None)) -> PiAPIClient:
    """Build a request client on the shared connection pool.

    The caller's ``x-api-key`` header wins over the configured key.
    """
    settings = get_settings()
    api_key = x_api_key or settings.PIAPI_API_KEY
    if not api_key:
        raise HTTPException(status_code=401, detail="PiAPI API key is required")
    return PiAPIClient(
        ClientConfig.from_settings(settings),
        credentials=lambda: api_key,
        http_client=get_shared_http_client(settings.PIAPI_HTTP_TIMEOUT),
    )


def get_task_poller(client: PiAPIClient = Depends(get_piapi_client)) -> TaskPoller:
    return TaskPoller(client, PollPolicy.from_settings(get_settings()))


@router.post("", response_model=TaskRead)
async def create_task(
    req: TaskCreate,
    client: PiAPIClient = Depends(get_piapi_client),
    poller: TaskPoller = Depends(get_task_poller),
):
    """Create a task; with ``wait`` block until it is terminal."""
    outcome = await submit_task(
        client,
        poller,
        req.to_request(),
        wait=req.wait,
        poll_interval=req.poll_interval,
        max_wait=req.max_wait,
    )
    return outcome.to_dict()


@router.post("/batch")
async def create_task_batch(
    req: BatchTaskCreate,
    client: PiAPIClient = Depends(get_piapi_client),
    poller: TaskPoller = Depends(get_task_poller),
) -> dict[str, Any]:
    """Submit several tasks. With ``continue_on_fail`` failures are reported per item."""
    results = await run_batch(
        client,
        poller,
        [item.to_request() for item in req.items],
        continue_on_fail=req.continue_on_fail,
        wait=req.wait,
        poll_interval=req.poll_interval,
        max_wait=req.max_wait,
        max_concurrency=req.max_concurrency,
    )
    return {
        "results": [r.to_dict() for r in results],
        "total": len(results),
        "failed": sum(1 for r in results if not r.ok),
    }


@router.post("/background")
async def dispatch_background_task(
    req: BackgroundTaskCreate,
    x_api_key: str | None = Header(default=None),
) -> dict[str, Any]:
    """Hand a submit-and-wait flow to a Celery worker."""
    from taskcore.tasks.task_jobs import submit_and_wait

    job = submit_and_wait.delay(
        req.model,
        req.task_type,
        req.input,
        req.config,
        idempotency_key=req.idempotency_key,
        poll_interval=req.poll_interval,
        max_wait=req.max_wait,
        api_key=x_api_key,
    )
    logger.info("Dispatched background job %s (model=%s)", job.id, req.model)
    return {"job_id": job.id, "status": "dispatched"}


@router.get("/background/{job_id}")
async def get_background_job(job_id: str) -> dict[str, Any]:
    """Poll a background job's Celery state and result."""
    from taskcore.tasks import celery_app

    result = celery_app.AsyncResult(job_id)
    payload: dict[str, Any] = {"job_id": job_id, "state": result.state}
    if result.ready():
        payload["result"] = result.result if result.successful() else str(result.result)
    return payload


async def _read_task(client: PiAPIClient, task_id: str, media_only: bool) -> dict[str, Any]:
    task = await client.get_task(task_id)
    payload = task.to_dict()
    if media_only:
        media_url, media_type = extract_media_url(task)
        payload["media_url"] = media_url
        payload["media_type"] = media_type
    return payload


@router.post("/lookup", response_model=TaskRead)
async def lookup_task(
    req: TaskLookup,
    client: PiAPIClient = Depends(get_piapi_client),
):
    """Look up a task whose id is given or carried by a previous response."""
    task_id = (req.task_id or "").strip() or infer_task_id(req.previous)
    if not task_id:
        raise HTTPException(
            status_code=400,
            detail="Task ID is required and cannot be found in input data",
        )
    return await _read_task(client, task_id, req.media_only)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_status(
    task_id: str,
    media_only: bool = False,
    client: PiAPIClient = Depends(get_piapi_client),
):
    """Return the current task snapshot, optionally with its media URL."""
    if not task_id.strip():
        raise HTTPException(status_code=400, detail="Task ID is required")
    return await _read_task(client, task_id, media_only)
