import os
import logging

from fastapi import APIRouter, Depends, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from api import state
from api.dependencies import get_orchestrator
from api.metrics import QUEUE_DEPTH
from dayplan.config import USE_POSTGRES
from pipeline.orchestrator import PipelineOrchestrator
from storage import db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint for container orchestration."""
    health = {
        "status": "healthy",
        "profile": os.getenv("DEPLOYMENT_PROFILE", "unknown"),
        "store": "postgres" if USE_POSTGRES else "in-memory",
        "pipeline": state.orchestrator.state.value if state.orchestrator else "stopped",
    }

    if USE_POSTGRES:
        db_health = await db.health_check()
        health["database"] = db_health
        if db_health["status"] != "healthy":
            health["status"] = "degraded"

    return health


@router.get("/metrics")
async def metrics() -> Response:
    """
    Prometheus scrape endpoint.
    """
    if state.orchestrator is not None:
        QUEUE_DEPTH.set(state.orchestrator.queue.qsize())

    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@router.get("/status")
async def pipeline_status(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    return orchestrator.status()
