from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Optional, Set, Tuple

import httpx

from dayplan import errors
from dayplan.models import Task
from scheduling.intervals import (
    INTERVAL_GRANULARITY_MIN,
    get_next_interval,
    is_in_notification_window,
)

logger = logging.getLogger(__name__)

KIND_SCHEDULED = "scheduled"
KIND_UPCOMING = "upcoming"


class NotificationPolicy:
    """Decides which kind of notification a freshly placed task warrants.

    ``upcoming`` is reserved for tasks starting in the very next interval while
    we are inside the lead-time window and the user is not already in the app.
    """

    def __init__(self) -> None:
        self.active_users: Set[str] = set()

    def set_user_active(self, user_id: str, is_active: bool) -> None:
        if is_active:
            self.active_users.add(user_id)
        else:
            self.active_users.discard(user_id)

    def kind_for(self, task: Task, now: datetime) -> str:
        if task.user_id in self.active_users:
            return KIND_SCHEDULED
        if not is_in_notification_window(now):
            return KIND_SCHEDULED

        next_interval = get_next_interval(now)
        interval_end = next_interval + timedelta(minutes=INTERVAL_GRANULARITY_MIN)
        if next_interval <= task.start_time < interval_end:
            return KIND_UPCOMING
        return KIND_SCHEDULED


class LoggingNotifier:
    def __init__(self, history: int = 200):
        self.delivered: Deque[Tuple[str, str]] = deque(maxlen=history)

    async def deliver(self, task: Task, kind: str) -> None:
        self.delivered.append((task.id, kind))
        logger.info(f'Notification ({kind}) for "{task.name}" at {task.start_time:%H:%M}')


class HttpNotifier:
    """Hands notifications to an external push service over HTTP."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self.api_key = api_key
        self.transport = transport

    async def deliver(self, task: Task, kind: str) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "kind": kind,
            "user_id": task.user_id,
            "task_id": task.id,
            "title": "New Task Scheduled" if kind == KIND_SCHEDULED else "Task Starting Soon",
            "body": f'"{task.name}" starts at {task.start_time:%H:%M}',
            "start_time": task.start_time.isoformat(),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                r = await client.post(self.url, headers=headers, json=payload)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise errors.TransientIOError(f"Notification for {task.id} failed: {e}") from e
