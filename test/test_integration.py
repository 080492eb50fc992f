import asyncio
import json
from datetime import datetime

import httpx
import pytest

from dayplan import errors
from integration.broadcast import HttpBroadcaster, LoggingBroadcaster
from integration.notifications import HttpNotifier, NotificationPolicy


def test_http_broadcaster_posts_channel_payload():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content), request.headers.get("authorization")))
        return httpx.Response(200)

    b = HttpBroadcaster("http://rt.local/", api_key="k", transport=httpx.MockTransport(handler))
    asyncio.run(b.publish("timeline-updates", {"task_id": "t1"}))

    path, body, auth = seen[0]
    assert path == "/broadcast"
    assert body == {"channel": "timeline-updates", "event": "broadcast", "payload": {"task_id": "t1"}}
    assert auth == "Bearer k"


def test_http_errors_become_transient():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    with pytest.raises(errors.TransientIOError):
        asyncio.run(HttpBroadcaster("http://rt.local", transport=transport).publish("c", {}))


def test_http_notifier_sends_kind(make_task):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    task = make_task("t1", "10:00", name="Gym")
    asyncio.run(HttpNotifier("http://push.local/send", transport=httpx.MockTransport(handler)).deliver(task, "upcoming"))

    assert seen[0]["kind"] == "upcoming"
    assert seen[0]["body"] == '"Gym" starts at 10:00'


def test_logging_broadcaster_keeps_history():
    b = LoggingBroadcaster(history=2)
    for i in range(3):
        asyncio.run(b.publish("c", {"i": i}))
    assert [p["i"] for _, p in b.published] == [1, 2]


def test_notification_kind(make_task):
    policy = NotificationPolicy()
    task = make_task("t1", "10:00")

    assert policy.kind_for(task, datetime(2026, 3, 2, 9, 59, 40)) == "upcoming"
    assert policy.kind_for(task, datetime(2026, 3, 2, 9, 58, 0)) == "scheduled"
    assert policy.kind_for(task, datetime(2026, 3, 2, 9, 54, 40)) == "scheduled"

    policy.set_user_active("u1", True)
    assert policy.kind_for(task, datetime(2026, 3, 2, 9, 59, 40)) == "scheduled"
