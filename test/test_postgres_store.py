import asyncio
from datetime import datetime

import pytest

from dayplan import errors
from storage import postgres_store
from storage.postgres_store import PostgresStore


def test_driver_errors_become_transient(monkeypatch):
    async def refused(*args):
        raise ConnectionRefusedError("db down")

    monkeypatch.setattr(postgres_store.db, "fetch", refused)

    with pytest.raises(errors.TransientIOError):
        asyncio.run(PostgresStore().get_all_tasks())


def test_update_task_round_trips_record(monkeypatch, make_task):
    captured = {}

    async def fake_fetchrow(query, *args):
        captured["args"] = args
        return dict(zip(postgres_store._TASK_COLUMNS.split(", "), args))

    monkeypatch.setattr(postgres_store.db, "fetchrow", fake_fetchrow)

    task = make_task("t1", "10:00", created_at=datetime(2026, 3, 2, 8, 0))
    stored = asyncio.run(PostgresStore().update_task(task))

    assert stored == task
    assert captured["args"][0] == "t1"


def test_work_item_hints_are_decoded(monkeypatch):
    async def fake_fetch(query, *args):
        return [
            {
                "id": "w1",
                "user_id": "u1",
                "name": "Gym",
                "hints": '{"duration": 45}',
                "created_at": datetime(2026, 3, 2, 8, 0),
            }
        ]

    monkeypatch.setattr(postgres_store.db, "fetch", fake_fetch)

    [item] = asyncio.run(PostgresStore().fetch_recent_work_items(datetime(2026, 3, 2)))
    assert item.hints == {"duration": 45}


def test_create_work_item_upserts_by_id(monkeypatch):
    captured = {}

    async def fake_fetchrow(query, *args):
        captured["query"] = query
        return {
            "id": args[0],
            "user_id": args[1],
            "name": args[2],
            "hints": args[3],
            "created_at": datetime(2026, 3, 2, 8, 0),
        }

    monkeypatch.setattr(postgres_store.db, "fetchrow", fake_fetchrow)

    item = asyncio.run(PostgresStore().create_work_item("prompt-p1", "u1", "Gym", {"duration": 45}))
    assert item.id == "prompt-p1"
    assert item.hints == {"duration": 45}
    assert "ON CONFLICT (id)" in captured["query"]
