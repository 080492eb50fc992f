import asyncio
from typing import List, Optional, Union

from pipeline.ingress import PollIngress, PushIngress
from pipeline.orchestrator import PipelineOrchestrator
from storage.listener import WorkItemListener
from storage.memory_store import InMemoryStore
from storage.postgres_store import PostgresStore

# Global instances initialized at startup
store: Optional[Union[InMemoryStore, PostgresStore]] = None
orchestrator: Optional[PipelineOrchestrator] = None
push_ingress: Optional[PushIngress] = None
poll_ingress: Optional[PollIngress] = None
listener: Optional[WorkItemListener] = None

background_tasks: List[asyncio.Task] = []
