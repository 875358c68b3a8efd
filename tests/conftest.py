"""Pytest configuration helpers.

This conftest puts the ``backend`` directory on ``sys.path`` so tests can
import the ``taskcore`` package regardless of how pytest is invoked, and
provides fakes for the PiAPI HTTP endpoint and the clock.
"""
import os
import sys
from typing import Any, Callable

import httpx
import pytest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND = os.path.join(ROOT, "backend")
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

from taskcore.services.piapi_client import ClientConfig, PiAPIClient  # noqa: E402

API_KEY = "pk-test-0123456789abcdef"


def envelope(data: Any = None, *, code: int = 200, message: str = "success") -> dict[str, Any]:
    return {"code": code, "message": message, "data": data}


def task_data(task_id: str, status: str, **extra: Any) -> dict[str, Any]:
    return {"task_id": task_id, "model": "Qubico/flux1-schnell", "task_type": "txt2img", "status": status, **extra}


class FakeClock:
    """Manual monotonic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakePiAPI:
    """Scripted stand-in for api.piapi.ai behind ``httpx.MockTransport``.

    ``create`` is the envelope returned by POST /api/v1/task; ``polls`` is a
    list of responses (envelopes, ``httpx.Response`` objects, exceptions, or
    callables taking the request) returned by successive GETs. The last poll
    response repeats.
    """

    def __init__(self, create: Any = None, polls: list[Any] | None = None) -> None:
        self.create = create if create is not None else envelope(task_data("abc123", "pending"))
        self.polls = list(polls or [])
        self.requests: list[httpx.Request] = []
        self.poll_count = 0

    @property
    def create_count(self) -> int:
        return sum(1 for r in self.requests if r.method == "POST")

    def _reply(self, request: httpx.Request, item: Any) -> httpx.Response:
        if callable(item):
            item = item(request)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return self._reply(request, self.create)
        self.poll_count += 1
        if not self.polls:
            return httpx.Response(404, json={"message": "no script"})
        item = self.polls[min(self.poll_count - 1, len(self.polls) - 1)]
        return self._reply(request, item)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_client() -> Callable[..., PiAPIClient]:
    """Factory for a PiAPIClient wired to a mock transport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> PiAPIClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        config = ClientConfig(base_url="https://api.piapi.ai", api_key=API_KEY)
        return PiAPIClient(config, http_client=http_client, **kwargs)

    return _make
