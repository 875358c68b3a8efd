import json
import logging

import redis

from taskcore.services import pubsub


class RecordingRedis:
    def __init__(self, error=None):
        self.published = []
        self.error = error

    def publish(self, channel, message):
        if self.error is not None:
            raise self.error
        self.published.append((channel, message))
        return 1


def test_publish_task_update_sends_json_on_task_channel(monkeypatch):
    fake = RecordingRedis()
    monkeypatch.setattr(pubsub, "get_redis", lambda: fake)

    pubsub.publish_task_update("abc123", "failed", error="gpu exploded")

    channel, message = fake.published[0]
    assert channel == "piapi:task:abc123"
    assert json.loads(message) == {
        "type": "task_update",
        "task_id": "abc123",
        "status": "failed",
        "error": "gpu exploded",
    }


def test_publish_survives_redis_outage(monkeypatch, caplog):
    fake = RecordingRedis(error=redis.ConnectionError("connection refused"))
    monkeypatch.setattr(pubsub, "get_redis", lambda: fake)

    with caplog.at_level(logging.WARNING, logger=pubsub.__name__):
        pubsub.publish_task_update("abc123", "completed")

    assert fake.published == []
    assert "Failed to publish update for task abc123" in caplog.text
