import asyncio
from datetime import datetime, timedelta

from dayplan import errors
from dayplan.config import PipelineConfig
from dayplan.models import PromptItem, TimelineEntry, TimelineSnapshot, WorkItem
from pipeline.ingress import PollIngress, PushIngress
from pipeline.orchestrator import OrchestratorState, PipelineOrchestrator
from storage.memory_store import InMemoryStore

NOW = datetime(2026, 3, 2, 8, 0)

ALL_STAGES = [
    "detected",
    "deduplicated",
    "analyzing",
    "scheduling",
    "merging_timeline",
    "notifying",
    "completed",
]


class FlakyStore:
    """Wraps a store and fails the first call to ``method``."""

    def __init__(self, inner, method="update_task"):
        self.inner = inner
        self.method = method
        self.failures = 1

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if name != self.method:
            return attr

        async def flaky(*args, **kwargs):
            if self.failures:
                self.failures -= 1
                raise errors.TransientIOError("connection reset")
            return await attr(*args, **kwargs)

        return flaky


class YieldingStore(InMemoryStore):
    """In-memory store that gives up the loop on every read."""

    async def get_all_tasks(self):
        await asyncio.sleep(0)
        return await super().get_all_tasks()

    async def get_latest_timeline(self, user_id):
        await asyncio.sleep(0)
        return await super().get_latest_timeline(user_id)


def _orchestrator(store, broadcaster, notifier, **kwargs):
    return PipelineOrchestrator(
        store=kwargs.pop("task_store", store),
        timelines=kwargs.pop("timelines", store),
        source=kwargs.pop("source", store),
        broadcaster=broadcaster,
        notifier=notifier,
        clock=kwargs.pop("clock", lambda: NOW),
        **kwargs,
    )


def _item(item_id="w1", name="Write report", **hints):
    return WorkItem(id=item_id, user_id="u1", name=name, hints=hints, created_at=NOW)


def test_item_runs_through_every_stage(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)

    assert orch.submit(_item())
    asyncio.run(orch.drain())

    task = store.tasks["w1"]
    assert task.start_time == NOW
    assert task.end_time == NOW + timedelta(minutes=30)
    assert broadcaster.stages("w1") == ALL_STAGES
    assert notifier.delivered == [("w1", "scheduled")]
    assert ("timeline-updates", {"type": "timeline_updated", "user_id": "u1", "task_id": "w1", "total_tasks": 1}) in broadcaster.published
    assert store.timelines["u1"][-1].references("w1")
    assert [a.type for a in store.actions] == ["task_scheduled"]
    assert orch.status()["completed"] == 1


def test_same_item_via_push_and_poll_runs_once(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)
    store.add_work_item(_item())
    push = PushIngress(orch)
    poll = PollIngress(orch, store, clock=lambda: NOW)

    async def run():
        accepted = push.on_change(_item().model_dump())
        polled = await poll.poll_once()
        await orch.drain()
        return accepted, polled

    accepted, polled = asyncio.run(run())

    assert accepted is True
    assert polled == 0
    assert broadcaster.stages("w1") == ALL_STAGES
    assert len(notifier.delivered) == 1
    assert orch.status()["duplicates"] == 1


def test_resubmitting_after_completion_is_dropped(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)
    orch.submit(_item())
    asyncio.run(orch.drain())

    assert not orch.submit(_item())
    assert orch.queue.empty()


def test_validation_failure_is_terminal_and_isolated(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)
    orch.submit(_item("bad", duration=0))
    orch.submit(_item("good", name="Read"))

    asyncio.run(orch.drain())

    assert broadcaster.stages("bad")[-1] == "failed"
    assert broadcaster.stages("good")[-1] == "completed"
    assert "bad" not in store.tasks
    failed = [a for a in store.actions if a.type == "task_failed"]
    assert [a.task_id for a in failed] == ["bad"]
    assert not orch.submit(_item("bad", duration=0))

    status = orch.status()
    assert status["failed"] == 1
    assert status["completed"] == 1
    assert status["recent_errors"][0]["error"] == "ValidationError"
    assert status["recent_errors"][0]["stage"] == "analyzing"


def test_transient_failure_is_retried_on_next_detection(store, broadcaster, notifier):
    flaky = FlakyStore(store)
    orch = _orchestrator(store, broadcaster, notifier, task_store=flaky)

    orch.submit(_item())
    asyncio.run(orch.drain())

    assert "w1" not in store.tasks
    assert broadcaster.stages("w1")[-1] == "failed"
    assert not any(a.type == "task_failed" for a in store.actions)

    assert orch.submit(_item())
    asyncio.run(orch.drain())

    assert store.tasks["w1"].status == "pending"
    assert broadcaster.stages("w1")[-1] == "completed"


def test_item_already_on_timeline_is_skipped_after_restart(store, broadcaster, notifier):
    store.timelines["u1"] = [
        TimelineSnapshot(
            created_at=NOW,
            tasks=[
                TimelineEntry(
                    name="Write report",
                    start_time=NOW + timedelta(hours=1),
                    end_time=NOW + timedelta(hours=2),
                    duration=3600,
                    task_id="w1",
                )
            ],
        )
    ]
    orch = _orchestrator(store, broadcaster, notifier)

    orch.submit(_item())
    asyncio.run(orch.drain())

    assert broadcaster.stages("w1") == ["detected"]
    assert "w1" not in store.tasks
    assert orch.status()["skipped"] == 1
    assert "w1" in orch.tracker


def test_prompt_becomes_a_scheduled_task(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)
    store.add_prompt(PromptItem(id="p1", user_id="u1", text="gym 45 minutes"))
    poll = PollIngress(orch, store, clock=lambda: NOW)

    async def run():
        first = await poll.poll_once()
        await orch.drain()
        second = await poll.poll_once()
        return first, second

    first, second = asyncio.run(run())

    assert first == 1
    assert second == 0
    assert store.prompts["p1"].processed
    [task] = store.tasks.values()
    assert task.name == "Gym for 45 minutes"
    assert task.category == "fitness"
    assert task.duration == 45 * 60


def test_malformed_push_is_ignored(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier)
    assert not PushIngress(orch).on_change({"user_id": "u1"})
    assert orch.queue.empty()


def test_start_and_stop_workers(store, broadcaster, notifier):
    orch = _orchestrator(store, broadcaster, notifier, config=PipelineConfig(worker_count=2))

    async def run():
        await orch.start()
        assert orch.state == OrchestratorState.RUNNING
        orch.submit(_item())
        await asyncio.wait_for(orch.queue.join(), timeout=5)
        await orch.stop()

    asyncio.run(run())

    assert orch.state == OrchestratorState.STOPPED
    assert broadcaster.stages("w1")[-1] == "completed"


def test_constraint_failure_is_terminal(store, broadcaster, notifier):
    late = datetime(2026, 3, 2, 23, 50)
    orch = _orchestrator(store, broadcaster, notifier, clock=lambda: late)

    orch.submit(_item("late", name="Read", duration=60))
    asyncio.run(orch.drain())

    assert broadcaster.stages("late") == ALL_STAGES[:4] + ["failed"]
    assert "late" not in store.tasks
    failed = [a for a in store.actions if a.type == "task_failed"]
    assert [a.task_id for a in failed] == ["late"]
    assert "late" in orch.tracker
    assert not orch.submit(_item("late", name="Read", duration=60))

    [error] = orch.status()["recent_errors"]
    assert error["error"] == "ConstraintError"
    assert error["stage"] == "scheduling"


def test_retry_keeps_the_slot_of_the_failed_attempt(store, broadcaster, notifier):
    flaky = FlakyStore(store, "save_timeline")
    orch = _orchestrator(store, broadcaster, notifier, timelines=flaky)

    orch.submit(_item())
    asyncio.run(orch.drain())

    assert store.tasks["w1"].start_time == NOW
    assert broadcaster.stages("w1")[-1] == "failed"

    assert orch.submit(_item())
    asyncio.run(orch.drain())

    assert broadcaster.stages("w1")[-1] == "completed"
    assert store.tasks["w1"].start_time == NOW
    [entry] = store.timelines["u1"][-1].tasks
    assert entry.task_id == "w1"
    assert entry.start_time == NOW


def test_prompt_conversion_retry_creates_one_work_item(store, broadcaster, notifier):
    flaky = FlakyStore(store, "mark_prompt_processed")
    orch = _orchestrator(store, broadcaster, notifier, source=flaky)
    store.add_prompt(PromptItem(id="p1", user_id="u1", text="gym 45 minutes"))
    poll = PollIngress(orch, store, clock=lambda: NOW)

    async def run():
        for _ in range(2):
            await poll.poll_once()
            await orch.drain()

    asyncio.run(run())

    assert list(store.work_items) == ["prompt-p1"]
    assert list(store.tasks) == ["prompt-p1"]
    assert store.prompts["p1"].processed
    assert len(notifier.delivered) == 1


def test_concurrent_workers_keep_every_timeline_entry(broadcaster, notifier):
    store = YieldingStore()
    orch = _orchestrator(store, broadcaster, notifier, config=PipelineConfig(worker_count=2))

    async def run():
        orch.submit(_item("a", name="Read"))
        orch.submit(_item("b", name="Write report"))
        await orch.start()
        await asyncio.wait_for(orch.queue.join(), timeout=5)
        await orch.stop()

    asyncio.run(run())

    latest = store.timelines["u1"][-1]
    assert sorted(e.task_id for e in latest.tasks) == ["a", "b"]
    a, b = sorted(store.tasks.values(), key=lambda t: t.start_time)
    assert a.end_time <= b.start_time
