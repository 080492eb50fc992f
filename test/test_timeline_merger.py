from datetime import timedelta

from dayplan.models import TimelineEntry, TimelineSnapshot
from timeline.merger import TimelineMerger, entry_from_task


def _entry(at, name, start, minutes=30, **kwargs):
    s = at(start)
    return TimelineEntry(
        name=name,
        start_time=s,
        end_time=s + timedelta(minutes=minutes),
        duration=minutes * 60,
        **kwargs,
    )


def test_drops_stale_and_keeps_later_duplicate(at):
    existing = TimelineSnapshot(
        created_at=at("08:00"),
        tasks=[
            _entry(at, "Old", "07:00", task_id="old"),
            _entry(at, "Dup", "11:00", task_id="dup"),
            _entry(at, "Dup", "13:00", task_id="dup"),
        ],
    )
    new = _entry(at, "New", "15:00", task_id="new")

    snapshot = TimelineMerger().merge(existing, new, now=at("09:00"))

    ids = [(e.task_id, e.start_time) for e in snapshot.tasks]
    assert ("old", at("07:00")) not in ids
    assert ids == [("dup", at("13:00")), ("new", at("15:00"))]
    assert snapshot.total_tasks == 2
    assert snapshot.last_updated_task == "new"


def test_remerge_replaces_same_task(at):
    existing = TimelineSnapshot(created_at=at("08:00"), tasks=[_entry(at, "A", "10:00", task_id="a")])
    snapshot = TimelineMerger().merge(existing, _entry(at, "A", "12:00", task_id="a"), now=at("09:00"))
    assert [(e.task_id, e.start_time) for e in snapshot.tasks] == [("a", at("12:00"))]


def test_overlaps_shift_with_buffer(at):
    existing = TimelineSnapshot(created_at=at("08:00"), tasks=[_entry(at, "A", "10:00", task_id="a")])
    new = _entry(at, "B", "10:15", minutes=20, task_id="b")

    snapshot = TimelineMerger().merge(existing, new, now=at("09:00"))

    b = snapshot.tasks[1]
    assert b.start_time == at("10:35")
    assert b.end_time == at("10:55")
    assert b.duration == 1200


def test_empty_history_starts_fresh(make_task, at):
    entry = entry_from_task(make_task("a", "10:00"))
    snapshot = TimelineMerger().merge(None, entry, now=at("09:00"))
    assert snapshot.total_tasks == 1
    assert snapshot.references("a")
    assert snapshot.tasks[0].auto_generated


def test_context_entries_surround_long_tasks(at):
    new = _entry(at, "Deep work", "10:00", minutes=60, task_id="w")

    snapshot = TimelineMerger(enable_context_entries=True).merge(None, new, now=at("09:00"))

    names = [(e.name, e.start_time) for e in snapshot.tasks]
    assert names == [
        ("Prepare for Deep work", at("09:50")),
        ("Deep work", at("10:00")),
        ("Break", at("11:00")),
    ]
    assert all(e.parent_task == "w" for e in snapshot.tasks if e.name != "Deep work")


def test_short_tasks_only_get_a_break(at):
    new = _entry(at, "Email", "10:00", minutes=15, task_id="e")
    snapshot = TimelineMerger(enable_context_entries=True).merge(None, new, now=at("09:00"))
    assert [e.name for e in snapshot.tasks] == ["Email", "Break"]


def test_stale_context_entries_are_replaced(at):
    merger = TimelineMerger(enable_context_entries=True)
    first = merger.merge(None, _entry(at, "Email", "10:00", minutes=15, task_id="e"), now=at("09:00"))
    second = merger.merge(first, _entry(at, "Email", "12:00", minutes=15, task_id="e"), now=at("09:00"))
    assert [(e.name, e.start_time) for e in second.tasks] == [
        ("Email", at("12:00")),
        ("Break", at("12:15")),
    ]
