"""
Progressive-delay rescheduling for a single task.

``reschedule_task`` only proposes a new window; ``apply_reschedule`` performs
the mutation and writes the action-log entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from dayplan.models import ActionLogEntry, Task
from scheduling.availability import find_next_available_slot, is_slot_available
from scheduling.intervals import end_of_day
from storage.protocols import TaskStore

logger = logging.getLogger(__name__)

# Minutes of delay for the 1st, 2nd, 3rd and every later reschedule
DELAY_SCHEDULE_MIN = (5, 15, 30, 60)


def get_next_delay(reschedule_count: int) -> int:
    """Delay in minutes for a task that has been moved ``reschedule_count`` times."""
    if reschedule_count < 0:
        reschedule_count = 0
    if reschedule_count >= len(DELAY_SCHEDULE_MIN):
        return DELAY_SCHEDULE_MIN[-1]
    return DELAY_SCHEDULE_MIN[reschedule_count]


@dataclass(frozen=True)
class RescheduleProposal:
    success: bool
    message: str
    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None


def reschedule_task(
    task: Task,
    all_tasks: Iterable[Task],
    now: Optional[datetime] = None,
) -> RescheduleProposal:
    """Propose a new window for ``task`` without touching it."""
    now = now or datetime.now()
    all_tasks = list(all_tasks)
    attempt = task.reschedule_count + 1
    delay = timedelta(minutes=get_next_delay(task.reschedule_count))
    duration = timedelta(seconds=task.duration)

    proposed_start = now + delay
    proposed_end = proposed_start + duration

    if proposed_end > end_of_day(now):
        return RescheduleProposal(
            success=False,
            message=f'Cannot reschedule "{task.name}" - would extend past end of day',
        )

    if is_slot_available(proposed_start, proposed_end, all_tasks, exclude_id=task.id):
        return RescheduleProposal(
            success=True,
            new_start=proposed_start,
            new_end=proposed_end,
            message=(
                f'Task "{task.name}" rescheduled to {proposed_start:%H:%M} '
                f"(attempt {attempt})"
            ),
        )

    slot = find_next_available_slot(task.duration, proposed_start, all_tasks, exclude_id=task.id)
    if slot is not None:
        return RescheduleProposal(
            success=True,
            new_start=slot,
            new_end=slot + duration,
            message=(
                f'Task "{task.name}" rescheduled to {slot:%H:%M} '
                f"(next available slot, attempt {attempt})"
            ),
        )

    return RescheduleProposal(
        success=False,
        message=f'Cannot reschedule "{task.name}" - no available slot before end of day',
    )


def moved_copy(task: Task, new_start: datetime, new_end: datetime, now: datetime) -> Task:
    """Copy of ``task`` placed at a new window with the move bookkeeping applied."""
    return task.model_copy(
        update={
            "start_time": new_start,
            "end_time": new_end,
            "original_start_time": task.original_start_time or task.start_time,
            "reschedule_count": task.reschedule_count + 1,
            "last_reschedule_at": now,
        }
    )


async def apply_reschedule(
    store: TaskStore,
    task: Task,
    proposal: RescheduleProposal,
    now: Optional[datetime] = None,
) -> Optional[Task]:
    """Persist a successful proposal and log it. Returns the updated task."""
    if not proposal.success or proposal.new_start is None or proposal.new_end is None:
        return None

    now = now or datetime.now()
    moved = moved_copy(task, proposal.new_start, proposal.new_end, now)
    moved = moved.model_copy(update={"status": "pending"})
    updated = await store.update_task(moved)

    await store.append_action(
        ActionLogEntry(
            type="task_rescheduled",
            task_id=task.id,
            task_name=task.name,
            detail=(
                f"Rescheduled to {proposal.new_start:%H:%M} "
                f"(attempt {moved.reschedule_count})"
            ),
            timestamp=now,
        )
    )
    logger.info(f"Applied reschedule for {task.id}: {proposal.message}")
    return updated
