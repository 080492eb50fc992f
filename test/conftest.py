from datetime import datetime, timedelta

import pytest

from dayplan.models import Task
from storage.memory_store import InMemoryStore

DAY = datetime(2026, 3, 2)


def _at(hhmm: str) -> datetime:
    h, m = map(int, hhmm.split(":"))
    return DAY.replace(hour=h, minute=m)


class FakeBroadcaster:
    def __init__(self):
        self.published = []

    async def publish(self, channel, payload):
        self.published.append((channel, payload))

    def stages(self, task_id):
        return [
            p["stage"] for c, p in self.published
            if c == "task-processing" and p["task_id"] == task_id
        ]


class FakeNotifier:
    def __init__(self):
        self.delivered = []

    async def deliver(self, task, kind):
        self.delivered.append((task.id, kind))


@pytest.fixture
def at():
    return _at


@pytest.fixture
def make_task():
    def _make(task_id, start, end=None, minutes=30, **kwargs):
        start_dt = _at(start)
        end_dt = _at(end) if end else start_dt + timedelta(minutes=minutes)
        return Task(
            id=task_id,
            name=kwargs.pop("name", f"Task {task_id}"),
            user_id=kwargs.pop("user_id", "u1"),
            start_time=start_dt,
            end_time=end_dt,
            duration=int((end_dt - start_dt).total_seconds()),
            **kwargs,
        )
    return _make


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def notifier():
    return FakeNotifier()
