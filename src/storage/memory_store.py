from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from dayplan.models import ActionLogEntry, PromptItem, Task, TimelineSnapshot, WorkItem


class InMemoryStore:
    """Process-local implementation of every storage contract.

    Used when ``USE_POSTGRES`` is off and as the store behind the tests.
    """

    def __init__(self) -> None:
        self.tasks: Dict[str, Task] = {}
        self.actions: List[ActionLogEntry] = []
        self.timelines: Dict[str, List[TimelineSnapshot]] = {}
        self.work_items: Dict[str, WorkItem] = {}
        self.prompts: Dict[str, PromptItem] = {}

    # ---- tasks ----

    async def get_all_tasks(self) -> List[Task]:
        return sorted(self.tasks.values(), key=lambda t: t.start_time)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    async def update_task(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task

    async def clear(self) -> None:
        self.tasks.clear()
        self.actions.clear()

    async def append_action(self, entry: ActionLogEntry) -> None:
        self.actions.append(entry)

    async def recent_actions(self, limit: int = 50) -> List[ActionLogEntry]:
        return list(reversed(self.actions[-limit:]))

    # ---- timelines ----

    async def get_latest_timeline(self, user_id: str) -> Optional[TimelineSnapshot]:
        history = self.timelines.get(user_id)
        return history[-1] if history else None

    async def save_timeline(self, user_id: str, snapshot: TimelineSnapshot) -> TimelineSnapshot:
        self.timelines.setdefault(user_id, []).append(snapshot)
        return snapshot

    async def timeline_references(self, task_id: str) -> bool:
        return any(
            history[-1].references(task_id) for history in self.timelines.values() if history
        )

    # ---- work items and prompts ----

    def add_work_item(self, item: WorkItem) -> WorkItem:
        self.work_items[item.id] = item
        return item

    def add_prompt(self, prompt: PromptItem) -> PromptItem:
        self.prompts[prompt.id] = prompt
        return prompt

    async def fetch_recent_work_items(self, since: datetime) -> List[WorkItem]:
        return [
            item
            for item in self.work_items.values()
            if item.created_at is None or item.created_at >= since
        ]

    async def fetch_unprocessed_prompts(self) -> List[PromptItem]:
        return [p for p in self.prompts.values() if not p.processed]

    async def create_work_item(
        self, item_id: str, user_id: str, name: str, hints: Dict[str, Any]
    ) -> WorkItem:
        if item_id in self.work_items:
            return self.work_items[item_id]
        item = WorkItem(
            id=item_id,
            user_id=user_id,
            name=name,
            hints=hints,
            created_at=datetime.now(),
        )
        return self.add_work_item(item)

    async def mark_prompt_processed(self, prompt_id: str) -> bool:
        prompt = self.prompts.get(prompt_id)
        if prompt is None:
            return False
        self.prompts[prompt_id] = prompt.model_copy(update={"processed": True})
        return True
