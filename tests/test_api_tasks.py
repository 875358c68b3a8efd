import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock, FakePiAPI, envelope, task_data
from taskcore.api.tasks import get_piapi_client, get_task_poller
from taskcore.main import app
from taskcore.services.task_poller import PollPolicy, TaskPoller


@pytest.fixture()
def api_client(make_client):
    """TestClient whose PiAPI calls go to a scripted FakePiAPI."""
    fake = FakePiAPI()
    clock = FakeClock()
    client = make_client(fake)

    app.dependency_overrides[get_piapi_client] = lambda: client
    app.dependency_overrides[get_task_poller] = lambda: TaskPoller(
        client, PollPolicy(interval=1.0, max_wait=10.0), clock=clock, sleep=clock.sleep,
    )
    yield TestClient(app), fake
    app.dependency_overrides.clear()


def test_create_task_and_wait(api_client):
    http, fake = api_client
    fake.polls = [
        envelope(task_data("abc123", "processing")),
        envelope(task_data("abc123", "completed", output={"video_url": "https://x/y.mp4"})),
    ]

    resp = http.post("/api/tasks", json={"model": "kling", "task_type": "video_generation", "input": {"prompt": "p"}})

    assert resp.status_code == 200
    body = resp.json()
    assert body["task_id"] == "abc123"
    assert body["status"] == "completed"
    assert body["result"] == {"video_url": "https://x/y.mp4"}
    assert body["waited"] is True


def test_create_task_without_wait(api_client):
    http, fake = api_client

    resp = http.post("/api/tasks", json={"model": "m", "task_type": "t", "wait": False})

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert fake.poll_count == 0


def test_application_error_maps_to_502(api_client):
    http, fake = api_client
    fake.create = {"code": 500, "message": "invalid model", "data": None}

    resp = http.post("/api/tasks", json={"model": "nope", "task_type": "t"})

    assert resp.status_code == 502
    assert resp.json()["detail"] == "invalid model"
    assert resp.json()["error_type"] == "ApplicationError"
    assert fake.poll_count == 0


def test_timeout_maps_to_504_with_task_id(api_client):
    http, fake = api_client
    fake.polls = [envelope(task_data("abc123", "pending"))]

    resp = http.post("/api/tasks", json={"model": "m", "task_type": "t", "max_wait": 3})

    assert resp.status_code == 504
    assert resp.json()["task_id"] == "abc123"
    assert resp.json()["error_type"] == "TaskTimeoutError"


def test_transport_error_maps_to_503(api_client):
    http, fake = api_client
    fake.create = lambda request: httpx.ConnectError("down", request=request)

    resp = http.post("/api/tasks", json={"model": "m", "task_type": "t"})

    assert resp.status_code == 503
    assert resp.json()["retriable"] is True


def test_get_task_status_with_media_url(api_client):
    http, fake = api_client
    fake.polls = [envelope(task_data("abc123", "completed", output={"image_url": "https://img/1.png"}))]

    resp = http.get("/api/tasks/abc123", params={"media_only": True})

    assert resp.status_code == 200
    assert resp.json()["media_url"] == "https://img/1.png"
    assert resp.json()["media_type"] == "image"


def test_get_unknown_task_maps_to_502(api_client):
    http, fake = api_client
    fake.polls = [envelope(None, code=404, message="task not found")]

    resp = http.get("/api/tasks/missing")

    assert resp.status_code == 502
    assert resp.json()["detail"] == "task not found"


def test_lookup_infers_task_id_from_previous_response(api_client):
    http, fake = api_client
    fake.polls = [envelope(task_data("abc123", "completed", output={"video_url": "https://v/1.mp4"}))]

    resp = http.post(
        "/api/tasks/lookup",
        json={"previous": {"code": 200, "data": {"task_id": " abc123 "}}, "media_only": True},
    )

    assert resp.status_code == 200
    assert resp.json()["task_id"] == "abc123"
    assert resp.json()["media_type"] == "video"
    assert fake.requests[-1].url.path == "/api/v1/task/abc123"


def test_lookup_without_any_task_id_is_400(api_client):
    http, fake = api_client

    resp = http.post("/api/tasks/lookup", json={"task_id": "  ", "previous": {"data": {}}})

    assert resp.status_code == 400
    assert fake.poll_count == 0


def test_batch_with_continue_on_fail(api_client):
    http, fake = api_client
    fake.polls = [envelope(task_data("abc123", "failed", error={"message": "gpu exploded"}))]

    resp = http.post(
        "/api/tasks/batch",
        json={
            "items": [{"model": "m", "task_type": "t"}, {"model": "m", "task_type": "t"}],
            "continue_on_fail": True,
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert body["failed"] == 2
    assert body["results"][0]["error"] == "Task failed: gpu exploded"
    assert body["results"][0]["task_id"] == "abc123"


def test_missing_api_key_is_401(monkeypatch):
    from taskcore.config import get_settings

    monkeypatch.setattr(get_settings(), "PIAPI_API_KEY", "")
    resp = TestClient(app).get("/api/tasks/abc123")
    assert resp.status_code == 401


def test_health_masks_key(monkeypatch):
    from taskcore.config import get_settings

    monkeypatch.setattr(get_settings(), "PIAPI_API_KEY", "pk-live-abcdefghijklmnop")
    resp = TestClient(app).get("/api/system/health")

    assert resp.status_code == 200
    assert resp.json()["api_key"] == "pk-l...mnop"
    assert "abcdefgh" not in resp.text
