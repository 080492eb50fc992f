import asyncio
import logging
from datetime import datetime
from typing import Optional

from api import state
from api.metrics import TASKS_EXPIRED_TOTAL, TASKS_RESCHEDULED_TOTAL
from dayplan.config import BROADCAST_URL, NOTIFY_URL, USE_POSTGRES, PipelineConfig
from integration.broadcast import HttpBroadcaster, LoggingBroadcaster
from integration.notifications import HttpNotifier, LoggingNotifier
from pipeline.ingress import PollIngress, PushIngress
from pipeline.orchestrator import PipelineOrchestrator
from scheduling.expiry import sweep_expired
from storage import db
from storage.listener import WorkItemListener
from storage.memory_store import InMemoryStore
from storage.postgres_store import PostgresStore

logger = logging.getLogger(__name__)


async def _expiry_sweep_worker(interval_s: float) -> None:
    """Periodically reschedule pending tasks whose window has passed."""
    logger.info("Expiry sweep worker started")

    while True:
        await asyncio.sleep(interval_s)

        if state.store is None:
            continue

        try:
            outcomes = await sweep_expired(state.store, datetime.now())
            if outcomes:
                TASKS_EXPIRED_TOTAL.inc(len(outcomes))
                moved = sum(1 for o in outcomes if o.proposal.success)
                TASKS_RESCHEDULED_TOTAL.inc(moved)
                logger.warning(f"Swept {len(outcomes)} expired task(s), {moved} rescheduled")
        except Exception as e:
            logger.error(f"Error in expiry sweep worker: {e}")


async def start_pipeline(config: Optional[PipelineConfig] = None) -> None:
    """Build the store, adapters and orchestrator, then start ingress and workers."""
    config = config or PipelineConfig.from_env()

    if USE_POSTGRES:
        await db.init_db_pool()
        await db.init_schema()
        state.store = PostgresStore()
    else:
        logger.info("USE_POSTGRES is off, using in-memory store")
        state.store = InMemoryStore()

    broadcaster = HttpBroadcaster(BROADCAST_URL) if BROADCAST_URL else LoggingBroadcaster()
    notifier = HttpNotifier(NOTIFY_URL) if NOTIFY_URL else LoggingNotifier()

    orchestrator = PipelineOrchestrator(
        store=state.store,
        timelines=state.store,
        source=state.store,
        broadcaster=broadcaster,
        notifier=notifier,
        config=config,
    )
    await orchestrator.start()
    state.orchestrator = orchestrator
    state.push_ingress = PushIngress(orchestrator)
    state.poll_ingress = PollIngress(
        orchestrator,
        state.store,
        interval_s=config.poll_interval_s,
        lookback_s=config.poll_lookback_s,
    )

    state.background_tasks = [
        asyncio.create_task(state.poll_ingress.run()),
        asyncio.create_task(_expiry_sweep_worker(config.expiry_sweep_interval_s)),
    ]

    if USE_POSTGRES:
        state.listener = WorkItemListener(state.push_ingress.on_change)
        await state.listener.start()


async def stop_pipeline() -> None:
    for task in state.background_tasks:
        task.cancel()
    await asyncio.gather(*state.background_tasks, return_exceptions=True)
    state.background_tasks = []

    if state.listener is not None:
        await state.listener.stop()
        state.listener = None

    if state.orchestrator is not None:
        await state.orchestrator.stop()

    if USE_POSTGRES:
        await db.close_db_pool()
