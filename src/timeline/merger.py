"""
Timeline merge: fold one newly scheduled task into a user's future timeline.

The snapshot is always rebuilt from scratch and written back whole, so
concurrent merges for different items never share intermediate state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from dayplan.models import Task, TimelineEntry, TimelineSnapshot

logger = logging.getLogger(__name__)

CONFLICT_BUFFER = timedelta(minutes=5)
PREPARATION_DURATION = timedelta(minutes=10)
BREAK_DURATION = timedelta(minutes=15)
PREPARATION_MIN_TASK_S = 1800


def entry_from_task(task: Task) -> TimelineEntry:
    return TimelineEntry(
        name=task.name,
        start_time=task.start_time,
        end_time=task.end_time,
        duration=task.duration,
        category=task.category,
        priority=task.priority,
        auto_generated=True,
        task_id=task.id,
    )


class TimelineMerger:
    def __init__(self, enable_context_entries: bool = False):
        self.enable_context_entries = enable_context_entries

    def merge(
        self,
        existing: Optional[TimelineSnapshot],
        new_entry: TimelineEntry,
        now: Optional[datetime] = None,
    ) -> TimelineSnapshot:
        now = now or datetime.now()

        entries = self._prune_and_dedup(existing, new_entry, now)

        if new_entry.task_id:
            entries = [e for e in entries if e.task_id != new_entry.task_id]
        entries.append(new_entry)
        entries.sort(key=lambda e: e.start_time)

        entries = self.resolve_overlaps(entries)

        if self.enable_context_entries:
            # the new entry may have been shifted while resolving overlaps
            placed = next(
                (e for e in entries if e is new_entry or (new_entry.task_id and e.task_id == new_entry.task_id)),
                new_entry,
            )
            entries = self._with_context_entries(entries, placed)

        return TimelineSnapshot(
            tasks=entries,
            created_at=now,
            description=f"Updated timeline with new task: {new_entry.name}",
            last_updated_task=new_entry.task_id,
            total_tasks=len(entries),
        )

    def _prune_and_dedup(
        self,
        existing: Optional[TimelineSnapshot],
        new_entry: TimelineEntry,
        now: datetime,
    ) -> List[TimelineEntry]:
        if existing is None:
            return []

        by_key: Dict[str, TimelineEntry] = {}
        for entry in existing.tasks:
            if entry.end_time <= now:
                continue
            # stale context entries for the task being re-merged
            if entry.auto_generated and entry.parent_task and entry.parent_task == new_entry.task_id:
                continue

            key = entry.dedup_key()
            kept = by_key.get(key)
            if kept is None or entry.start_time > kept.start_time:
                by_key[key] = entry

        return list(by_key.values())

    def resolve_overlaps(self, entries: List[TimelineEntry]) -> List[TimelineEntry]:
        """Push each entry that starts inside its predecessor to just after it."""
        resolved: List[TimelineEntry] = []
        for entry in entries:
            if resolved and entry.start_time < resolved[-1].end_time:
                new_start = resolved[-1].end_time + CONFLICT_BUFFER
                entry = entry.model_copy(
                    update={
                        "start_time": new_start,
                        "end_time": new_start + timedelta(seconds=entry.duration),
                    }
                )
                logger.info(f'Resolved conflict: moved "{entry.name}" to {new_start:%H:%M}')
            resolved.append(entry)
        return resolved

    def _with_context_entries(
        self, entries: List[TimelineEntry], new_entry: TimelineEntry
    ) -> List[TimelineEntry]:
        context: List[TimelineEntry] = []

        if new_entry.duration >= PREPARATION_MIN_TASK_S:
            context.append(
                TimelineEntry(
                    name=f"Prepare for {new_entry.name}",
                    start_time=new_entry.start_time - PREPARATION_DURATION,
                    end_time=new_entry.start_time,
                    duration=int(PREPARATION_DURATION.total_seconds()),
                    category="preparation",
                    priority="low",
                    auto_generated=True,
                    parent_task=new_entry.task_id,
                )
            )

        context.append(
            TimelineEntry(
                name="Break",
                start_time=new_entry.end_time,
                end_time=new_entry.end_time + BREAK_DURATION,
                duration=int(BREAK_DURATION.total_seconds()),
                category="break",
                priority="low",
                auto_generated=True,
                parent_task=new_entry.task_id,
            )
        )

        return sorted(entries + context, key=lambda e: e.start_time)
