import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_store
from api.metrics import TASKS_RESCHEDULED_TOTAL
from dayplan import errors
from scheduling.repack import apply_repack, can_satisfy_constraints, greedy_repack, reschedule_and_repack

router = APIRouter()
logger = logging.getLogger(__name__)


def _serialize_repack(result) -> dict:
    return {
        "success": result.success,
        "message": result.message,
        "moved": [t.model_dump(mode="json") for t in result.moved()],
        "failed": [t.model_dump(mode="json") for t in result.failed],
    }


@router.get("/tasks")
async def get_tasks(store=Depends(get_store)) -> dict:
    try:
        tasks = await store.get_all_tasks()
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "tasks": [t.model_dump(mode="json") for t in tasks],
        "total": len(tasks),
    }


@router.delete("/tasks")
async def clear_tasks(store=Depends(get_store)) -> dict:
    try:
        await store.clear()
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "cleared"}


@router.post("/tasks/{task_id}/reschedule")
async def reschedule(task_id: str, store=Depends(get_store)) -> dict:
    """Reschedule one task with the escalating delay, then repack the rest of the day."""
    try:
        outcome = await reschedule_and_repack(store, task_id, datetime.now())
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if outcome.proposal.success:
        TASKS_RESCHEDULED_TOTAL.inc()

    return {
        "success": outcome.success,
        "message": outcome.message,
        "new_start": outcome.proposal.new_start.isoformat() if outcome.proposal.new_start else None,
        "new_end": outcome.proposal.new_end.isoformat() if outcome.proposal.new_end else None,
        "repack": _serialize_repack(outcome.repack) if outcome.repack else None,
    }


@router.post("/repack")
async def repack(store=Depends(get_store)) -> dict:
    now = datetime.now()
    try:
        result = greedy_repack(await store.get_all_tasks(), now)
        await apply_repack(store, result, now)
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))

    TASKS_RESCHEDULED_TOTAL.inc(len(result.moved_ids))
    return _serialize_repack(result)


@router.get("/repack/check")
async def repack_check(store=Depends(get_store)) -> dict:
    """Dry run: would every pending task still fit before the end of the day?"""
    try:
        tasks = await store.get_all_tasks()
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"can_satisfy": can_satisfy_constraints(tasks, datetime.now())}


@router.get("/timeline/{user_id}")
async def get_timeline(user_id: str, store=Depends(get_store)) -> dict:
    try:
        snapshot = await store.get_latest_timeline(user_id)
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No timeline for {user_id}")
    return snapshot.model_dump(mode="json")


@router.get("/actions")
async def get_actions(limit: int = 50, store=Depends(get_store)) -> dict:
    """Most recent action-log entries, newest first."""
    try:
        actions = await store.recent_actions(limit)
    except errors.TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"actions": [a.model_dump(mode="json") for a in actions]}
