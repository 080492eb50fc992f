from fastapi import HTTPException

from api import state
from pipeline.ingress import PushIngress
from pipeline.orchestrator import PipelineOrchestrator


def get_store():
    if state.store is None:
        raise HTTPException(status_code=503, detail="Store not initialized")
    return state.store


def get_orchestrator() -> PipelineOrchestrator:
    if state.orchestrator is None:
        raise HTTPException(status_code=503, detail="Pipeline not running")
    return state.orchestrator


def get_push_ingress() -> PushIngress:
    if state.push_ingress is None:
        raise HTTPException(status_code=503, detail="Pipeline not running")
    return state.push_ingress
