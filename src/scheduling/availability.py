"""
Slot availability checks and earliest-free-slot search.

All intervals are half-open: ``[start, end)``. Tasks in a terminal status
(failed, cancelled) never block a slot.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from dayplan.models import Task
from scheduling.intervals import end_of_day, round_up_to_minute

logger = logging.getLogger(__name__)

# Minimum gap left between two consecutive tasks
MIN_TASK_GAP = timedelta(minutes=1)


def _blocking(tasks: Iterable[Task], exclude_id: Optional[str]) -> List[Task]:
    return [
        t for t in tasks
        if not t.is_terminal and (exclude_id is None or t.id != exclude_id)
    ]


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and end > other_start


def is_slot_available(
    start: datetime,
    end: datetime,
    tasks: Iterable[Task],
    exclude_id: Optional[str] = None,
) -> bool:
    """True when no blocking task overlaps ``[start, end)``."""
    for task in _blocking(tasks, exclude_id):
        if overlaps(start, end, task.start_time, task.end_time):
            return False
    return True


def find_next_available_slot(
    duration_s: int,
    not_before: datetime,
    tasks: Iterable[Task],
    exclude_id: Optional[str] = None,
) -> Optional[datetime]:
    """
    Find the earliest start for a ``duration_s`` long slot.

    Starts at ``not_before`` rounded up to the next whole minute and never
    lets the slot run past the end of that calendar day. On a conflict the
    candidate jumps to just after the earliest-ending blocker, so the work is
    bounded by the number of conflicting tasks rather than minutes in a day.

    Returns:
        The slot start, or None when nothing fits before end of day.
    """
    horizon = end_of_day(not_before)
    duration = timedelta(seconds=duration_s)
    blockers = sorted(_blocking(tasks, exclude_id), key=lambda t: t.end_time)

    candidate = round_up_to_minute(not_before)

    while candidate + duration <= horizon:
        candidate_end = candidate + duration
        if is_slot_available(candidate, candidate_end, blockers):
            return candidate

        next_end = next((t.end_time for t in blockers if t.end_time > candidate), None)
        if next_end is not None:
            candidate = next_end + MIN_TASK_GAP
        else:
            # Nothing ends after the candidate yet it still conflicts; step forward.
            logger.warning(
                f"Inconsistent blockers at {candidate.isoformat()}, advancing one minute"
            )
            candidate += timedelta(minutes=1)

    return None
