from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict

import pydantic

from dayplan.models import PromptItem, WorkItem
from pipeline.orchestrator import PipelineOrchestrator
from storage.protocols import WorkItemSource

logger = logging.getLogger(__name__)


class PushIngress:
    """Change notifications (database LISTEN or webhook) handed to the orchestrator."""

    source_name = "push"

    def __init__(self, orchestrator: PipelineOrchestrator):
        self.orchestrator = orchestrator

    def on_change(self, record: Dict[str, Any]) -> bool:
        try:
            item = WorkItem.model_validate(record)
        except pydantic.ValidationError as e:
            logger.warning(f"Ignoring malformed work item notification: {e}")
            return False
        return self.orchestrator.submit(item, source=self.source_name)

    async def on_prompt(self, record: Dict[str, Any]) -> bool:
        try:
            prompt = PromptItem.model_validate(record)
        except pydantic.ValidationError as e:
            logger.warning(f"Ignoring malformed prompt notification: {e}")
            return False
        return await self.orchestrator.submit_prompt(prompt, source=self.source_name)


class PollIngress:
    """
    Fixed-interval safety net for missed pushes and restarts.

    Each cycle re-reads work items created inside the lookback window plus any
    unprocessed prompts; the orchestrator's dedup drops what was already seen.
    """

    source_name = "poll"

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        source: WorkItemSource,
        interval_s: float = 30.0,
        lookback_s: float = 120.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.orchestrator = orchestrator
        self.source = source
        self.interval_s = interval_s
        self.lookback_s = lookback_s
        self.clock = clock

    async def poll_once(self) -> int:
        since = self.clock() - timedelta(seconds=self.lookback_s)
        accepted = 0

        for item in await self.source.fetch_recent_work_items(since):
            if self.orchestrator.submit(item, source=self.source_name):
                accepted += 1

        for prompt in await self.source.fetch_unprocessed_prompts():
            if await self.orchestrator.submit_prompt(prompt, source=self.source_name):
                accepted += 1

        if accepted:
            logger.info(f"Poll picked up {accepted} new item(s)")
        return accepted

    async def run(self) -> None:
        """Poll forever; the first cycle runs immediately to catch startup backlog."""
        logger.info(f"Poll ingress started (every {self.interval_s}s)")
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception(f"Error in poll ingress: {e}")
            await asyncio.sleep(self.interval_s)
