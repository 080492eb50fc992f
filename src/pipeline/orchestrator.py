"""
Pipeline orchestrator.

Every detected work item walks Analyze -> Schedule -> MergeTimeline -> Notify.
Both ingress channels hand items to ``submit``, which dedups synchronously and
puts them on a single queue drained by the worker loop(s). A failing item is
recorded and broadcast as failed; it never takes the loop down with it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from api.metrics import (
    ITEMS_COMPLETED_TOTAL,
    ITEMS_DETECTED_TOTAL,
    ITEMS_DUPLICATE_TOTAL,
    ITEMS_FAILED_TOTAL,
    QUEUE_DEPTH,
    STAGE_LATENCY_SECONDS,
)
from classification.task_analyzer import TaskAnalysis, TaskAnalyzer
from dayplan import errors
from dayplan.config import PipelineConfig
from dayplan.models import (
    ActionLogEntry,
    PipelineStage,
    ProcessingStatus,
    PromptItem,
    Task,
    WorkItem,
)
from extraction.prompt_extractor import PromptExtractor
from integration.broadcast import TASK_PROCESSING, TIMELINE_UPDATES
from integration.notifications import NotificationPolicy
from pipeline.idempotency import IdempotencyTracker
from scheduling.scheduler import Scheduler
from storage.protocols import Broadcaster, Notifier, TaskStore, TimelineStore, WorkItemSource
from timeline.merger import TimelineMerger, entry_from_task

logger = logging.getLogger(__name__)

PROMPT_KEY_PREFIX = "prompt:"
PROMPT_ITEM_PREFIX = "prompt-"


class OrchestratorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class PipelineOrchestrator:
    def __init__(
        self,
        store: TaskStore,
        timelines: TimelineStore,
        source: WorkItemSource,
        broadcaster: Broadcaster,
        notifier: Notifier,
        analyzer: Optional[TaskAnalyzer] = None,
        scheduler: Optional[Scheduler] = None,
        merger: Optional[TimelineMerger] = None,
        extractor: Optional[PromptExtractor] = None,
        notification_policy: Optional[NotificationPolicy] = None,
        config: Optional[PipelineConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or PipelineConfig()
        self.store = store
        self.timelines = timelines
        self.source = source
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.analyzer = analyzer or TaskAnalyzer()
        self.scheduler = scheduler or Scheduler()
        self.merger = merger or TimelineMerger(self.config.enable_context_entries)
        self.extractor = extractor or PromptExtractor()
        self.notification_policy = notification_policy or NotificationPolicy()
        self.clock = clock

        self.tracker = IdempotencyTracker(ttl_s=self.config.dedup_ttl_s)
        self.queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        self.state = OrchestratorState.STOPPED
        self.recent_errors: Deque[Dict[str, Any]] = deque(maxlen=self.config.max_recent_errors)

        self.completed = 0
        self.failed = 0
        self.duplicates = 0
        self.skipped = 0

        self._workers: List[asyncio.Task] = []
        self._user_locks: Dict[str, asyncio.Lock] = {}

    # ---- ingress entry points ----

    def submit(self, item: WorkItem, source: str = "push") -> bool:
        """Dedup ``item`` and enqueue it. Returns False for an already-seen id.

        Runs to completion without awaiting, so concurrent channels cannot both
        pass the check for the same id.
        """
        ITEMS_DETECTED_TOTAL.labels(source=source).inc()
        if not self.tracker.check_and_mark(item.id):
            self.duplicates += 1
            ITEMS_DUPLICATE_TOTAL.labels(source=source).inc()
            logger.debug(str(errors.DuplicateDetected(item.id, source)))
            return False

        self.queue.put_nowait(item)
        QUEUE_DEPTH.set(self.queue.qsize())
        logger.info(f"Accepted work item {item.id} from {source}")
        return True

    async def submit_prompt(self, prompt: PromptItem, source: str = "poll") -> bool:
        """Turn an unprocessed prompt into a work item and submit it."""
        if prompt.processed:
            return False

        key = PROMPT_KEY_PREFIX + prompt.id
        if not self.tracker.check_and_mark(key):
            logger.debug(str(errors.DuplicateDetected(key, source)))
            return False

        extracted = self.extractor.extract(prompt)
        try:
            item = await self.source.create_work_item(
                PROMPT_ITEM_PREFIX + prompt.id, prompt.user_id, extracted.name, extracted.hints
            )
            await self.source.mark_prompt_processed(prompt.id)
        except errors.TransientIOError as e:
            self.tracker.release(key)
            self._record_error(prompt.id, "prompt", e)
            logger.error(f"Failed to convert prompt {prompt.id}: {e}")
            return False

        logger.info(f'Created work item {item.id} "{item.name}" from prompt {prompt.id}')
        return self.submit(item, source)

    # ---- lifecycle ----

    async def start(self) -> None:
        if self.state != OrchestratorState.STOPPED:
            return
        self.state = OrchestratorState.STARTING
        self._workers = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self.config.worker_count)
        ]
        self.state = OrchestratorState.RUNNING
        logger.info(f"Pipeline orchestrator running with {len(self._workers)} worker(s)")

    async def stop(self) -> None:
        if self.state != OrchestratorState.RUNNING:
            return
        self.state = OrchestratorState.STOPPING
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.state = OrchestratorState.STOPPED
        logger.info("Pipeline orchestrator stopped")

    async def _worker_loop(self, n: int) -> None:
        logger.info(f"Pipeline worker {n} started")
        while True:
            item = await self.queue.get()
            try:
                await self.process_item(item)
            finally:
                self.queue.task_done()
                QUEUE_DEPTH.set(self.queue.qsize())

    async def drain(self) -> int:
        """Process everything currently queued on the caller's task."""
        processed = 0
        while not self.queue.empty():
            item = self.queue.get_nowait()
            try:
                await self.process_item(item)
                processed += 1
            finally:
                self.queue.task_done()
                QUEUE_DEPTH.set(self.queue.qsize())
        return processed

    # ---- per-item pipeline ----

    async def process_item(self, item: WorkItem) -> bool:
        """Run one item through every stage. Returns True when it completed."""
        stage = PipelineStage.DETECTED
        try:
            await self._broadcast_status(item, stage)

            if await self.timelines.timeline_references(item.id):
                # already placed before a restart emptied the tracker
                self.tracker.mark(item.id)
                self.skipped += 1
                logger.info(f"Work item {item.id} already on a timeline, skipping")
                return False
            stage = PipelineStage.DEDUPLICATED
            await self._broadcast_status(item, stage)

            stage = PipelineStage.ANALYZING
            await self._broadcast_status(item, stage)
            with STAGE_LATENCY_SECONDS.labels(stage=stage.value).time():
                analysis = self.analyzer.analyze(item)

            # read-modify-write of one user's tasks and timeline
            async with self._user_lock(item.user_id):
                stage = PipelineStage.SCHEDULING
                await self._broadcast_status(
                    item, stage, f"{analysis.category}, {analysis.effective_duration_min} min"
                )
                with STAGE_LATENCY_SECONDS.labels(stage=stage.value).time():
                    task = await self._schedule(item, analysis)

                stage = PipelineStage.MERGING_TIMELINE
                await self._broadcast_status(item, stage, f"Placed at {task.start_time:%H:%M}")
                with STAGE_LATENCY_SECONDS.labels(stage=stage.value).time():
                    snapshot = await self._merge(task)

            stage = PipelineStage.NOTIFYING
            await self._broadcast_status(item, stage)
            with STAGE_LATENCY_SECONDS.labels(stage=stage.value).time():
                await self._notify(task, snapshot.total_tasks)

        except (errors.ValidationError, errors.ConstraintError) as e:
            await self._fail(item, stage, e)
            await self._log_failure(item, e)
            return False
        except errors.TransientIOError as e:
            # next detection retries from scratch
            self.tracker.release(item.id)
            await self._fail(item, stage, e)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error processing work item {item.id}: {e}")
            await self._fail(item, stage, e)
            return False

        self.completed += 1
        ITEMS_COMPLETED_TOTAL.inc()
        await self._broadcast_status(item, PipelineStage.COMPLETED, f"Scheduled {task.name}")
        logger.info(f'Completed work item {item.id} "{task.name}" at {task.start_time:%H:%M}')
        return True

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    async def _schedule(self, item: WorkItem, analysis: TaskAnalysis) -> Task:
        now = self.clock()
        existing = [t for t in await self.store.get_all_tasks() if t.user_id == item.user_id]
        placement = self.scheduler.place(analysis, existing, now)

        try:
            task = Task(
                id=item.id,
                name=item.name,
                user_id=item.user_id,
                category=analysis.category,
                start_time=placement.start_time,
                end_time=placement.end_time,
                duration=placement.duration_s,
                priority=analysis.priority,
                created_at=now,
            )
        except ValueError as e:
            raise errors.ValidationError(f"Invalid placement for {item.id}: {e}") from e

        stored = await self.store.update_task(task)
        await self.store.append_action(
            ActionLogEntry(
                type="task_scheduled",
                task_id=stored.id,
                task_name=stored.name,
                detail=placement.reasoning,
                timestamp=now,
            )
        )
        return stored

    async def _merge(self, task: Task):
        now = self.clock()
        existing = await self.timelines.get_latest_timeline(task.user_id)
        snapshot = self.merger.merge(existing, entry_from_task(task), now)
        return await self.timelines.save_timeline(task.user_id, snapshot)

    async def _notify(self, task: Task, total_tasks: int) -> None:
        kind = self.notification_policy.kind_for(task, self.clock())
        await self.notifier.deliver(task, kind)
        await self.broadcaster.publish(
            TIMELINE_UPDATES,
            {
                "type": "timeline_updated",
                "user_id": task.user_id,
                "task_id": task.id,
                "total_tasks": total_tasks,
            },
        )

    # ---- failure bookkeeping ----

    async def _fail(self, item: WorkItem, stage: PipelineStage, error: Exception) -> None:
        self.failed += 1
        ITEMS_FAILED_TOTAL.labels(error=type(error).__name__).inc()
        self._record_error(item.id, stage.value, error)
        logger.error(f"Work item {item.id} failed during {stage.value}: {error}")
        await self._broadcast_status(item, PipelineStage.FAILED, str(error))

    async def _log_failure(self, item: WorkItem, error: Exception) -> None:
        try:
            await self.store.append_action(
                ActionLogEntry(
                    type="task_failed",
                    task_id=item.id,
                    task_name=item.name,
                    detail=str(error),
                    timestamp=self.clock(),
                )
            )
        except errors.TransientIOError as e:
            logger.error(f"Could not write failure entry for {item.id}: {e}")

    def _record_error(self, item_id: str, stage: str, error: Exception) -> None:
        self.recent_errors.append(
            {
                "item_id": item_id,
                "stage": stage,
                "error": type(error).__name__,
                "detail": str(error),
                "timestamp": self.clock().isoformat(),
            }
        )

    async def _broadcast_status(
        self, item: WorkItem, stage: PipelineStage, detail: Optional[str] = None
    ) -> None:
        status = ProcessingStatus(
            task_id=item.id,
            user_id=item.user_id,
            stage=stage,
            detail=detail,
            timestamp=self.clock(),
        )
        try:
            await self.broadcaster.publish(TASK_PROCESSING, status.to_payload())
        except errors.TransientIOError as e:
            # status updates are advisory; the item's own state is unaffected
            logger.warning(f"Status broadcast for {item.id} ({stage.value}) failed: {e}")

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "completed": self.completed,
            "failed": self.failed,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "queue_depth": self.queue.qsize(),
            "seen": len(self.tracker),
            "recent_errors": list(self.recent_errors),
        }
