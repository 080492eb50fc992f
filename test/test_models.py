from datetime import datetime

import pytest
from pydantic import ValidationError

from dayplan.models import PipelineStage, ProcessingStatus, Task, TimelineEntry, WorkItem


def test_task_defaults(make_task):
    t = make_task("a", "10:00")
    assert t.status == "pending"
    assert t.priority == "medium"
    assert t.reschedule_count == 0
    assert t.original_start_time is None
    assert t.duration == 1800


def test_task_rejects_inverted_window():
    with pytest.raises(ValidationError):
        Task(
            id="x",
            name="X",
            start_time=datetime(2026, 1, 1, 10, 0),
            end_time=datetime(2026, 1, 1, 9, 0),
            duration=60,
        )


def test_task_rejects_blank_name_and_zero_duration():
    with pytest.raises(ValidationError):
        Task(id="x", name="   ", start_time=datetime(2026, 1, 1, 9), end_time=datetime(2026, 1, 1, 10), duration=3600)
    with pytest.raises(ValidationError):
        Task(id="x", name="X", start_time=datetime(2026, 1, 1, 9), end_time=datetime(2026, 1, 1, 10), duration=0)


def test_priority_weight_and_terminal(make_task):
    assert make_task("a", "10:00", priority="high").priority_weight == 3
    assert make_task("b", "10:00", priority="low").priority_weight == 1
    assert make_task("c", "10:00", status="failed").is_terminal
    assert not make_task("d", "10:00", status="completed").is_terminal


def test_timeline_entry_dedup_key():
    start = datetime(2026, 1, 1, 9, 0)
    with_id = TimelineEntry(name="A", start_time=start, end_time=start, duration=60, task_id="t1")
    without_id = TimelineEntry(name="Break", start_time=start, end_time=start, duration=60)
    assert with_id.dedup_key() == "t1"
    assert without_id.dedup_key() == "Break-2026-01-01T09:00:00"


def test_work_item_hints_default_to_empty():
    item = WorkItem(id="w1", user_id="u1", name="Gym", hints=None)
    assert item.hints == {}


def test_processing_status_payload():
    status = ProcessingStatus(
        task_id="w1",
        user_id="u1",
        stage=PipelineStage.SCHEDULING,
        timestamp=datetime(2026, 1, 1, 9, 0),
    )
    payload = status.to_payload()
    assert payload["stage"] == "scheduling"
    assert payload["detail"] is None
    assert payload["timestamp"] == "2026-01-01T09:00:00"
