"""
Greedy priority repacking of a day's movable tasks.

Tasks are partitioned into:
- fixed: in_progress or completed, never moved, always block
- movable: pending, placed in priority order
- terminal: failed or cancelled, passed through untouched
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set

from dayplan.models import FIXED_STATUSES, TERMINAL_STATUSES, ActionLogEntry, Task
from scheduling.availability import find_next_available_slot, is_slot_available
from scheduling.intervals import end_of_day
from scheduling.reschedule import (
    RescheduleProposal,
    apply_reschedule,
    moved_copy,
    reschedule_task,
)
from storage.protocols import TaskStore

logger = logging.getLogger(__name__)

REPACK_FAILURE_DETAIL = "Could not fit into schedule after repack attempt"


@dataclass
class RepackResult:
    success: bool
    message: str
    repacked: List[Task] = field(default_factory=list)
    failed: List[Task] = field(default_factory=list)
    fixed: List[Task] = field(default_factory=list)
    terminal: List[Task] = field(default_factory=list)
    moved_ids: Set[str] = field(default_factory=set)

    def moved(self) -> List[Task]:
        return [t for t in self.repacked if t.id in self.moved_ids]


@dataclass
class RescheduleOutcome:
    """Combined result of rescheduling one expired task and repacking the rest."""

    success: bool
    message: str
    proposal: RescheduleProposal
    repack: Optional[RepackResult] = None


def _sort_key(task: Task):
    intent = task.original_start_time or task.start_time
    return (-task.priority_weight, intent)


def greedy_repack(tasks: Iterable[Task], now: Optional[datetime] = None) -> RepackResult:
    """
    Re-place every pending task for the day of ``now``.

    A task that has not expired and whose current window is still in the
    future and free is left where it is. Everything else goes to the earliest
    free slot from ``now``. Tasks that fit nowhere before end of day are
    returned in ``failed``; the caller decides what to do with them.
    """
    now = now or datetime.now()
    horizon = end_of_day(now)

    tasks = list(tasks)
    fixed = [t for t in tasks if t.status in FIXED_STATUSES]
    terminal = [t for t in tasks if t.status in TERMINAL_STATUSES]
    movable = sorted((t for t in tasks if t.status == "pending"), key=_sort_key)

    repacked: List[Task] = []
    failed: List[Task] = []
    moved_ids: Set[str] = set()

    for task in movable:
        blockers = fixed + repacked

        if (
            task.end_time > now
            and task.start_time > now
            and is_slot_available(task.start_time, task.end_time, blockers, exclude_id=task.id)
        ):
            repacked.append(task)
            continue

        slot = find_next_available_slot(task.duration, now, blockers, exclude_id=task.id)
        if slot is not None:
            slot_end = slot + timedelta(seconds=task.duration)
            if slot_end <= horizon:
                repacked.append(moved_copy(task, slot, slot_end, now))
                moved_ids.add(task.id)
                logger.debug(f"Repacked {task.id} ({task.priority}) to {slot:%H:%M}")
                continue

        failed.append(task)

    if failed:
        names = ", ".join(t.name for t in failed)
        return RepackResult(
            success=False,
            message=f"Could not fit {len(failed)} task(s) into schedule: {names}",
            repacked=repacked,
            failed=failed,
            fixed=fixed,
            terminal=terminal,
            moved_ids=moved_ids,
        )

    return RepackResult(
        success=True,
        message=f"Successfully repacked {len(repacked)} task(s)",
        repacked=repacked,
        fixed=fixed,
        terminal=terminal,
        moved_ids=moved_ids,
    )


def can_satisfy_constraints(tasks: Iterable[Task], now: Optional[datetime] = None) -> bool:
    """Dry-run repack: would every pending task fit before end of day?"""
    return greedy_repack(tasks, now).success


async def mark_failed(store: TaskStore, task: Task, detail: str, now: datetime) -> Task:
    failed = task.model_copy(update={"status": "failed", "failed_at": now})
    stored = await store.update_task(failed)
    await store.append_action(
        ActionLogEntry(
            type="task_skipped",
            task_id=task.id,
            task_name=task.name,
            detail=detail,
            timestamp=now,
        )
    )
    return stored


async def apply_repack(
    store: TaskStore,
    result: RepackResult,
    now: Optional[datetime] = None,
) -> int:
    """Write moved tasks, log the moves and mark failures. Returns tasks written."""
    now = now or datetime.now()
    written = 0

    for task in result.moved():
        await store.update_task(task)
        await store.append_action(
            ActionLogEntry(
                type="task_rescheduled",
                task_id=task.id,
                task_name=task.name,
                detail=f"Repacked to {task.start_time:%H:%M}",
                timestamp=now,
            )
        )
        written += 1

    for task in result.failed:
        await mark_failed(store, task, REPACK_FAILURE_DETAIL, now)
        written += 1

    if written:
        logger.info(
            f"Applied repack: {len(result.moved_ids)} moved, {len(result.failed)} failed"
        )
    return written


async def reschedule_and_repack(
    store: TaskStore,
    task_id: str,
    now: Optional[datetime] = None,
) -> RescheduleOutcome:
    """Reschedule an expired task, then repack everything around it."""
    now = now or datetime.now()
    all_tasks = await store.get_all_tasks()
    task = next((t for t in all_tasks if t.id == task_id), None)
    if task is None:
        raise KeyError(task_id)

    proposal = reschedule_task(task, all_tasks, now=now)
    if not proposal.success:
        await mark_failed(store, task, proposal.message, now)
        logger.warning(proposal.message)
        return RescheduleOutcome(success=False, message=proposal.message, proposal=proposal)

    await apply_reschedule(store, task, proposal, now=now)

    fresh = await store.get_all_tasks()
    repack = greedy_repack(fresh, now)
    await apply_repack(store, repack, now)

    return RescheduleOutcome(
        success=repack.success,
        message=f"{proposal.message}. {repack.message}",
        proposal=proposal,
        repack=repack,
    )
