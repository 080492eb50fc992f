import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_orchestrator, get_push_ingress
from pipeline.ingress import PushIngress
from pipeline.orchestrator import PipelineOrchestrator

router = APIRouter(prefix="/hooks")
logger = logging.getLogger(__name__)


class WorkItemIn(BaseModel):
    id: str
    user_id: str
    name: str
    hints: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None  # ISO


class PromptIn(BaseModel):
    id: str
    user_id: str
    text: str
    processed: bool = False


class PresenceIn(BaseModel):
    user_id: str
    active: bool


@router.post("/work-items")
async def work_item_created(
    payload: WorkItemIn,
    push: PushIngress = Depends(get_push_ingress),
) -> dict:
    """Change-notification webhook for newly created work items."""
    accepted = push.on_change(payload.model_dump())
    return {"status": "accepted" if accepted else "duplicate", "id": payload.id}


@router.post("/prompts")
async def prompt_created(
    payload: PromptIn,
    push: PushIngress = Depends(get_push_ingress),
) -> dict:
    accepted = await push.on_prompt(payload.model_dump())
    return {"status": "accepted" if accepted else "ignored", "id": payload.id}


@router.post("/presence")
async def presence_changed(
    payload: PresenceIn,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    """App foreground/background signal; active users get no "upcoming" pushes."""
    orchestrator.notification_policy.set_user_active(payload.user_id, payload.active)
    logger.info(f"User {payload.user_id} is now {'active' if payload.active else 'inactive'}")
    return {"status": "ok", "user_id": payload.user_id, "active": payload.active}
