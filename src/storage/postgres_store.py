"""
PostgreSQL-backed implementation of the storage contracts.

Tasks, the action log, work items, prompts and timeline snapshots all live in
the tables from schema.sql. Driver and connection failures surface as
``TransientIOError`` so the pipeline can retry the item on the next detection.
"""

import functools
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from dayplan import errors
from dayplan.models import ActionLogEntry, PromptItem, Task, TimelineSnapshot, WorkItem
from storage import db

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id, user_id, name, category, start_time, end_time, duration, status, priority, "
    "reschedule_count, original_start_time, last_reschedule_at, failed_at, created_at"
)


def _transient(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"{fn.__name__} failed: {e}")
            raise errors.TransientIOError(f"{fn.__name__} failed: {e}") from e

    return wrapper


def _task_from_record(record) -> Task:
    return Task(**dict(record))


def _work_item_from_record(record) -> WorkItem:
    hints = record["hints"]
    return WorkItem(
        id=record["id"],
        user_id=record["user_id"],
        name=record["name"],
        hints=json.loads(hints) if isinstance(hints, str) else hints,
        created_at=record["created_at"],
    )


class PostgresStore:
    # ---- tasks ----

    @_transient
    async def get_all_tasks(self) -> List[Task]:
        records = await db.fetch(f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY start_time")
        return [_task_from_record(r) for r in records]

    @_transient
    async def get_task(self, task_id: str) -> Optional[Task]:
        record = await db.fetchrow(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = $1", task_id)
        return _task_from_record(record) if record else None

    @_transient
    async def update_task(self, task: Task) -> Task:
        query = f"""
            INSERT INTO tasks ({_TASK_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, COALESCE($14::timestamp, NOW()::timestamp))
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                category = EXCLUDED.category,
                start_time = EXCLUDED.start_time,
                end_time = EXCLUDED.end_time,
                duration = EXCLUDED.duration,
                status = EXCLUDED.status,
                priority = EXCLUDED.priority,
                reschedule_count = EXCLUDED.reschedule_count,
                original_start_time = EXCLUDED.original_start_time,
                last_reschedule_at = EXCLUDED.last_reschedule_at,
                failed_at = EXCLUDED.failed_at
            RETURNING {_TASK_COLUMNS}
        """
        record = await db.fetchrow(
            query,
            task.id,
            task.user_id,
            task.name,
            task.category,
            task.start_time,
            task.end_time,
            task.duration,
            task.status,
            task.priority,
            task.reschedule_count,
            task.original_start_time,
            task.last_reschedule_at,
            task.failed_at,
            task.created_at,
        )
        return _task_from_record(record)

    @_transient
    async def clear(self) -> None:
        async with db.get_connection() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM tasks")
                await conn.execute("DELETE FROM action_log")
        logger.info("Cleared all tasks and action log entries")

    @_transient
    async def append_action(self, entry: ActionLogEntry) -> None:
        await db.execute(
            """
            INSERT INTO action_log (type, task_id, task_name, detail, timestamp)
            VALUES ($1, $2, $3, $4, $5)
            """,
            entry.type,
            entry.task_id,
            entry.task_name,
            entry.detail,
            entry.timestamp,
        )

    @_transient
    async def recent_actions(self, limit: int = 50) -> List[ActionLogEntry]:
        records = await db.fetch(
            """
            SELECT type, task_id, task_name, detail, timestamp
            FROM action_log ORDER BY timestamp DESC, id DESC LIMIT $1
            """,
            limit,
        )
        return [ActionLogEntry(**dict(r)) for r in records]

    # ---- timelines ----

    @_transient
    async def get_latest_timeline(self, user_id: str) -> Optional[TimelineSnapshot]:
        snapshot = await db.fetchval(
            """
            SELECT snapshot FROM user_timeline
            WHERE user_id = $1 ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            user_id,
        )
        if snapshot is None:
            return None
        return TimelineSnapshot.model_validate_json(snapshot)

    @_transient
    async def save_timeline(self, user_id: str, snapshot: TimelineSnapshot) -> TimelineSnapshot:
        task_ids = [e.task_id for e in snapshot.tasks if e.task_id]
        await db.execute(
            """
            INSERT INTO user_timeline (user_id, snapshot, task_ids, created_at)
            VALUES ($1, $2::jsonb, $3, $4)
            """,
            user_id,
            snapshot.model_dump_json(),
            task_ids,
            snapshot.created_at,
        )
        logger.info(f"Saved timeline for {user_id} with {snapshot.total_tasks} entries")
        return snapshot

    @_transient
    async def timeline_references(self, task_id: str) -> bool:
        # only each user's latest snapshot counts
        found = await db.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM (
                    SELECT DISTINCT ON (user_id) task_ids
                    FROM user_timeline
                    ORDER BY user_id, created_at DESC, id DESC
                ) latest
                WHERE $1 = ANY(latest.task_ids)
            )
            """,
            task_id,
        )
        return bool(found)

    # ---- work items and prompts ----

    @_transient
    async def fetch_recent_work_items(self, since: datetime) -> List[WorkItem]:
        records = await db.fetch(
            """
            SELECT id, user_id, name, hints, created_at FROM work_items
            WHERE created_at >= $1 ORDER BY created_at
            """,
            since,
        )
        return [_work_item_from_record(r) for r in records]

    @_transient
    async def fetch_unprocessed_prompts(self) -> List[PromptItem]:
        records = await db.fetch(
            "SELECT id, user_id, text, processed FROM user_prompts WHERE NOT processed ORDER BY created_at"
        )
        return [PromptItem(**dict(r)) for r in records]

    @_transient
    async def create_work_item(
        self, item_id: str, user_id: str, name: str, hints: Dict[str, Any]
    ) -> WorkItem:
        # an existing row is returned unchanged
        record = await db.fetchrow(
            """
            INSERT INTO work_items (id, user_id, name, hints)
            VALUES ($1, $2, $3, $4::jsonb)
            ON CONFLICT (id) DO UPDATE SET id = work_items.id
            RETURNING id, user_id, name, hints, created_at
            """,
            item_id,
            user_id,
            name,
            json.dumps(hints),
        )
        return _work_item_from_record(record)

    @_transient
    async def mark_prompt_processed(self, prompt_id: str) -> bool:
        result = await db.execute(
            "UPDATE user_prompts SET processed = TRUE WHERE id = $1", prompt_id
        )
        return result == "UPDATE 1"
