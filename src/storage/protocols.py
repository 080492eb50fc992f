"""Collaborator contracts consumed by the scheduling engine and the pipeline."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from dayplan.models import ActionLogEntry, PromptItem, Task, TimelineSnapshot, WorkItem


class TaskStore(Protocol):
    """Task persistence plus the append-only action log."""

    async def get_all_tasks(self) -> List[Task]:
        ...

    async def get_task(self, task_id: str) -> Optional[Task]:
        ...

    async def update_task(self, task: Task) -> Task:
        """Insert or replace a task, returning the stored version."""
        ...

    async def clear(self) -> None:
        ...

    async def append_action(self, entry: ActionLogEntry) -> None:
        ...


class TimelineStore(Protocol):
    """Timeline snapshots, always read and written as a whole."""

    async def get_latest_timeline(self, user_id: str) -> Optional[TimelineSnapshot]:
        ...

    async def save_timeline(self, user_id: str, snapshot: TimelineSnapshot) -> TimelineSnapshot:
        ...

    async def timeline_references(self, task_id: str) -> bool:
        """Whether any stored timeline already carries ``task_id``."""
        ...


class WorkItemSource(Protocol):
    """Where the poll ingress looks for new work."""

    async def fetch_recent_work_items(self, since: datetime) -> List[WorkItem]:
        ...

    async def fetch_unprocessed_prompts(self) -> List[PromptItem]:
        ...

    async def create_work_item(
        self, item_id: str, user_id: str, name: str, hints: Dict[str, Any]
    ) -> WorkItem:
        """Insert a work item, or return the one already stored under ``item_id``."""
        ...

    async def mark_prompt_processed(self, prompt_id: str) -> bool:
        ...


class Broadcaster(Protocol):
    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        ...


class Notifier(Protocol):
    async def deliver(self, task: Task, kind: str) -> None:
        ...
