from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from dayplan.models import Task
from scheduling.repack import RescheduleOutcome, reschedule_and_repack
from storage.protocols import TaskStore

logger = logging.getLogger(__name__)


def find_expired(tasks: List[Task], now: datetime) -> List[Task]:
    """Pending tasks whose window has already closed."""
    return [t for t in tasks if t.status == "pending" and t.end_time < now]


async def sweep_expired(store: TaskStore, now: Optional[datetime] = None) -> List[RescheduleOutcome]:
    now = now or datetime.now()
    outcomes: List[RescheduleOutcome] = []

    for task in find_expired(await store.get_all_tasks(), now):
        # an earlier iteration's repack may already have moved this task
        current = await store.get_task(task.id)
        if current is None or current.status != "pending" or current.end_time >= now:
            continue
        logger.info(f'Task "{task.name}" expired at {task.end_time:%H:%M}, rescheduling')
        outcomes.append(await reschedule_and_repack(store, task.id, now))

    return outcomes
