"""PiAPI request client.

One authenticated call to the task API per method call. Transport, HTTP and
envelope failures all surface as ``PiAPIError`` subclasses. Nothing here
retries: task creation must never be silently repeated, and poll retries
belong to the TaskPoller.

Envelope convention: ``{"code": 200, "message": "success", "data": {...}}``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import quote

import httpx

from taskcore.config import Settings
from taskcore.services.cancellation import run_cancellable
from taskcore.services.errors import (
    ApplicationError,
    HttpStatusError,
    TransportError,
)
from taskcore.services.task_models import (
    OutboundRequest,
    Task,
    TaskStatus,
    extract_image_url,
    failure_details,
    generation_failed,
    stream_content,
)

logger = logging.getLogger(__name__)

TASK_PATH = "/api/v1/task"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
SUCCESS_CODE = 200


@dataclass(frozen=True)
class ClientConfig:
    """Explicit connection settings for a PiAPIClient."""
    base_url: str = "https://api.piapi.ai"
    api_key: str = ""
    api_key_header: str = "x-api-key"
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientConfig":
        return cls(
            base_url=settings.PIAPI_BASE_URL,
            api_key=settings.PIAPI_API_KEY,
            api_key_header=settings.PIAPI_API_KEY_HEADER,
            timeout=settings.PIAPI_HTTP_TIMEOUT,
        )


# ---------------------------------------------------------------------------
# Shared HTTP client (lazy init): one connection pool for all flows
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None


def get_shared_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=timeout)
    return _http_client


async def close_shared_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


def mask_key(key: str) -> str:
    """Mask an API key for safe logging: show first 4 and last 4 chars."""
    if len(key) <= 12:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


class PiAPIClient:
    """Authenticated client for the PiAPI task endpoints.

    Args:
        config: Base URL, auth header name, default key and timeout.
        credentials: Optional callable returning the API key; overrides
            ``config.api_key`` and is consulted on every request.
        http_client: Optional shared ``httpx.AsyncClient``. When omitted the
            client owns a private one and closes it in ``aclose()``.
        clock: Monotonic clock used to stamp polled snapshots.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        credentials: Callable[[], str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ClientConfig()
        self._credentials = credentials
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._own_client = http_client is None
        self._clock = clock

    async def __aenter__(self) -> "PiAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._own_client:
            await self._http.aclose()

    # -- request building ------------------------------------------------

    def _api_key(self) -> str:
        key = self._credentials() if self._credentials else self.config.api_key
        if not key:
            raise ValueError("PiAPI API key is required")
        return key

    def build_request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> OutboundRequest:
        headers = {
            "Content-Type": "application/json",
            self.config.api_key_header: self._api_key(),
        }
        return OutboundRequest(
            method=method.upper(),
            path=path,
            body=body,
            headers=headers,
            params=params,
        )

    # -- transport -------------------------------------------------------

    async def dispatch(
        self,
        outbound: OutboundRequest,
        *,
        cancel_event: asyncio.Event | None = None,
        task_id: str | None = None,
    ) -> httpx.Response:
        """Send one request and return the raw 2xx response.

        Raises TransportError or HttpStatusError.
        """
        url = f"{self.config.base_url.rstrip('/')}{outbound.path}"
        kwargs: dict[str, Any] = {"headers": outbound.headers}
        if outbound.body is not None:
            kwargs["json"] = outbound.body
        if outbound.params:
            kwargs["params"] = outbound.params

        try:
            response = await run_cancellable(
                self._http.request(outbound.method, url, **kwargs),
                cancel_event,
                task_id=task_id,
                path=outbound.path,
            )
        except httpx.TimeoutException as e:
            logger.warning("PiAPI %s %s timed out", outbound.method, outbound.path)
            raise TransportError(
                f"Timed out calling {outbound.path}", path=outbound.path
            ) from e
        except httpx.TransportError as e:
            logger.warning("PiAPI %s %s transport error: %s", outbound.method, outbound.path, e)
            raise TransportError(
                f"Could not reach PiAPI for {outbound.path}: {e}", path=outbound.path
            ) from e

        if not response.is_success:
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            logger.warning(
                "PiAPI %s %s returned HTTP %d",
                outbound.method, outbound.path, response.status_code,
            )
            raise HttpStatusError(response.status_code, body, path=outbound.path)
        return response

    async def send(
        self,
        outbound: OutboundRequest,
        *,
        cancel_event: asyncio.Event | None = None,
        task_id: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises TransportError, HttpStatusError, or ApplicationError for a body
        that is not JSON. The envelope itself is not checked here.
        """
        response = await self.dispatch(outbound, cancel_event=cancel_event, task_id=task_id)
        try:
            return response.json()
        except ValueError as e:
            raise ApplicationError(
                f"Malformed JSON response from {outbound.path}", path=outbound.path
            ) from e

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        task_id: str | None = None,
    ) -> dict[str, Any]:
        """Perform one call and return the envelope, checking its ``code``."""
        outbound = self.build_request(method, path, body, params)
        logger.debug(
            "PiAPI %s %s key=%s",
            outbound.method, path, mask_key(outbound.headers[self.config.api_key_header]),
        )
        payload = await self.send(outbound, cancel_event=cancel_event, task_id=task_id)

        if not isinstance(payload, dict):
            raise ApplicationError(f"Unexpected response shape from {path}", path=path)

        code = payload.get("code")
        if code != SUCCESS_CODE:
            message = payload.get("message") or "Unknown error"
            logger.error("PiAPI %s %s failed: code=%s message=%s", outbound.method, path, code, message)
            raise ApplicationError(
                message, path=path, code=code, data=payload.get("data"),
            )
        return payload

    # -- task endpoints --------------------------------------------------

    async def create_task(
        self,
        model: str,
        task_type: str,
        task_input: dict[str, Any],
        config: dict[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Task:
        """Create a task and return its initial (pending) snapshot."""
        body: dict[str, Any] = {
            "model": model,
            "task_type": task_type,
            "input": task_input,
        }
        if config:
            body["config"] = config

        payload = await self.request("POST", TASK_PATH, body, cancel_event=cancel_event)
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ApplicationError(
                "Unexpected task payload", path=TASK_PATH, code=payload.get("code"), data=data,
            )
        if not data.get("task_id"):
            raise ApplicationError(
                "Task creation returned no task_id", path=TASK_PATH, code=payload.get("code"), data=data,
            )

        task = Task.from_data(data)
        if task.status is TaskStatus.UNKNOWN:
            task = Task(
                id=task.id,
                status=TaskStatus.PENDING,
                model=task.model or model,
                task_type=task.task_type or task_type,
                data=data,
                created_at=task.created_at,
            )
        logger.info("PiAPI task created: %s (model=%s, type=%s)", task.id, model, task_type)
        return task

    async def get_task(
        self,
        task_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Task:
        """Fetch the current snapshot of a task. Read-only on the remote side."""
        task_id = task_id.strip()
        if not task_id:
            raise ValueError("task_id is required")

        path = f"{TASK_PATH}/{quote(task_id, safe='')}"
        try:
            payload = await self.request("GET", path, cancel_event=cancel_event, task_id=task_id)
        except HttpStatusError as exc:
            if exc.status_code != 404:
                raise
            raise ApplicationError(
                f"Task {task_id} not found", path=path, code=404, data=exc.body,
            ) from exc

        data = payload.get("data")
        if not data:
            raise ApplicationError(
                f"Task {task_id} not found", path=path, code=payload.get("code"),
            )
        if not isinstance(data, dict):
            raise ApplicationError(
                "Unexpected task payload", path=path, code=payload.get("code"), data=data,
            )
        if not data.get("task_id"):
            data = {**data, "task_id": task_id}
        return Task.from_data(data, polled_at=self._clock())

    # -- chat endpoints --------------------------------------------------

    def _chat_request(self, body: dict[str, Any]) -> OutboundRequest:
        return OutboundRequest(
            method="POST",
            path=CHAT_COMPLETIONS_PATH,
            body=body,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key()}",
            },
        )

    async def chat_completion(
        self,
        body: dict[str, Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """POST to the OpenAI-compatible chat endpoint (Bearer auth, no envelope)."""
        payload = await self.send(self._chat_request(body), cancel_event=cancel_event)
        if not isinstance(payload, dict):
            raise ApplicationError(
                f"Unexpected response shape from {CHAT_COMPLETIONS_PATH}",
                path=CHAT_COMPLETIONS_PATH,
            )
        return payload

    async def generate_chat_image(
        self,
        body: dict[str, Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Run an image-producing chat completion in stream mode.

        The streamed ``data:`` chunks are joined into the reply text. A reply
        that reports a failed generation raises ApplicationError with the
        stated reason; otherwise the image URL found in the reply is returned
        alongside the text.
        """
        response = await self.dispatch(
            self._chat_request({**body, "stream": True}), cancel_event=cancel_event,
        )
        raw = response.text
        content = stream_content(raw)

        if generation_failed(content):
            reason, suggestion = failure_details(content)
            logger.warning("PiAPI chat image generation failed: %s", reason)
            raise ApplicationError(
                reason,
                path=CHAT_COMPLETIONS_PATH,
                data={"suggestion": suggestion, "content": content},
            )

        image_url = extract_image_url(content) or extract_image_url(raw)
        if image_url is None:
            logger.warning("PiAPI chat image reply carried no image URL")
        return {
            "status": TaskStatus.COMPLETED.value,
            "image_url": image_url,
            "content": content,
        }
