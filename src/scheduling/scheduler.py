from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from classification.task_analyzer import TaskAnalysis
from dayplan import errors
from dayplan.models import Task
from scheduling.availability import find_next_available_slot, is_slot_available
from scheduling.intervals import (
    INTERVAL_GRANULARITY_MIN,
    align_to_interval,
    end_of_day,
    get_next_interval,
)

logger = logging.getLogger(__name__)

MIN_DURATION_MIN = 5


@dataclass(frozen=True)
class Placement:
    start_time: datetime
    end_time: datetime
    duration_min: int
    confidence: float
    reasoning: str

    @property
    def duration_s(self) -> int:
        return self.duration_min * 60


class Scheduler:
    """One-shot placement used by the pipeline's Schedule stage.

    This is not a repack: it picks a preferred start for a single new item,
    then slides it to the next free slot if it collides with existing tasks.
    """

    def place(
        self,
        analysis: TaskAnalysis,
        existing: Iterable[Task] = (),
        now: Optional[datetime] = None,
    ) -> Placement:
        now = now or datetime.now()
        existing = list(existing)
        constraints = analysis.constraints
        duration_min = analysis.effective_duration_min

        start = self._preferred_start(analysis, now)
        end = start + timedelta(minutes=duration_min)

        if constraints.end_exact is not None:
            end = constraints.end_exact
            if constraints.duration_min:
                start = end - timedelta(minutes=duration_min)
            else:
                duration_min = max(MIN_DURATION_MIN, round((end - start).total_seconds() / 60))
        elif constraints.latest_end is not None and end > constraints.latest_end:
            end = constraints.latest_end
            duration_min = max(MIN_DURATION_MIN, round((end - start).total_seconds() / 60))

        if end <= start:
            duration_min = analysis.duration_min
            end = start + timedelta(minutes=duration_min)

        # Explicitly requested windows are honoured as-is.
        # Rows left by an earlier attempt at this item never block it.
        item_id = analysis.item.id
        if constraints.start_exact is None and constraints.end_exact is None:
            if end > end_of_day(start) or not is_slot_available(start, end, existing, item_id):
                slot = find_next_available_slot(duration_min * 60, start, existing, item_id)
                if slot is None:
                    raise errors.ConstraintError(
                        f'No available slot before end of day for "{analysis.item.name}"'
                    )
                logger.info(
                    f"Preferred start {start:%H:%M} taken, moved {analysis.item.id} to {slot:%H:%M}"
                )
                start = slot
                end = start + timedelta(minutes=duration_min)

            if constraints.latest_start is not None and start > constraints.latest_start:
                raise errors.ConstraintError(
                    f'No slot for "{analysis.item.name}" starting by '
                    f"{constraints.latest_start:%H:%M}"
                )

        return Placement(
            start_time=start,
            end_time=end,
            duration_min=duration_min,
            confidence=0.95 if constraints.start_exact else 0.85,
            reasoning=self._reasoning(analysis, start, duration_min),
        )

    def _preferred_start(self, analysis: TaskAnalysis, now: datetime) -> datetime:
        constraints = analysis.constraints
        if constraints.start_exact is not None:
            return constraints.start_exact

        if constraints.earliest_start is not None:
            start = constraints.earliest_start
        else:
            start = get_next_interval(now)
            preference = analysis.preferred_time_of_day
            if preference == "morning":
                if now.hour >= 18:
                    start = (start + timedelta(days=1)).replace(hour=8, minute=0)
            elif preference == "evening":
                if now.hour < 18:
                    start = start.replace(hour=18, minute=0)
            elif preference == "business_hours":
                if now.hour < 9:
                    start = start.replace(hour=9, minute=0)
                elif now.hour >= 17:
                    start = (start + timedelta(days=1)).replace(hour=9, minute=0)

        start = align_to_interval(start)
        if constraints.earliest_start is not None:
            while start < constraints.earliest_start:
                start += timedelta(minutes=INTERVAL_GRANULARITY_MIN)

        if start < now:
            start = align_to_interval(get_next_interval(now))
        if constraints.latest_start is not None and start > constraints.latest_start:
            # preference would overshoot the deadline; take the earliest start instead
            start = max(align_to_interval(get_next_interval(now)), constraints.earliest_start or now)
        return start

    def _reasoning(self, analysis: TaskAnalysis, start: datetime, duration_min: int) -> str:
        if analysis.constraints.start_exact is not None:
            return (
                f'Scheduled "{analysis.item.name}" at {start:%H:%M} to satisfy the '
                f"requested start time. Duration: {duration_min} minutes."
            )
        return (
            f'Scheduled {analysis.category} task "{analysis.item.name}" for {start:%H:%M} '
            f"based on {analysis.preferred_time_of_day} preference. "
            f"Duration: {duration_min} minutes."
        )
