from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


TaskStatus = Literal["pending", "in_progress", "completed", "failed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]
ActionType = Literal["task_scheduled", "task_rescheduled", "task_skipped", "task_failed"]

TERMINAL_STATUSES = frozenset({"failed", "cancelled"})
FIXED_STATUSES = frozenset({"completed", "in_progress"})

PRIORITY_WEIGHTS: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}


class Task(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    category: str = "general"

    start_time: datetime
    end_time: datetime
    duration: int = Field(..., gt=0)  # seconds

    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"

    reschedule_count: int = Field(0, ge=0)
    original_start_time: Optional[datetime] = None
    last_reschedule_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("name must not be blank")
        return v2

    @model_validator(mode="after")
    def window_is_ordered(self) -> "Task":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def priority_weight(self) -> int:
        return PRIORITY_WEIGHTS.get(self.priority, 2)


class TimelineEntry(BaseModel):
    name: str
    start_time: datetime
    end_time: datetime
    duration: int  # seconds
    category: str = "general"
    priority: TaskPriority = "medium"
    auto_generated: bool = False
    task_id: Optional[str] = None
    parent_task: Optional[str] = None

    def dedup_key(self) -> str:
        if self.task_id:
            return self.task_id
        return f"{self.name}-{self.start_time.isoformat()}"


class TimelineSnapshot(BaseModel):
    tasks: List[TimelineEntry] = Field(default_factory=list)
    created_at: datetime
    description: str = ""
    last_updated_task: Optional[str] = None
    total_tasks: int = 0

    def references(self, task_id: str) -> bool:
        return self.last_updated_task == task_id or any(
            e.task_id == task_id for e in self.tasks
        )


class WorkItem(BaseModel):
    """A newly detected unit of work waiting to be placed on a timeline."""

    id: str = Field(..., min_length=1)
    user_id: str
    name: str
    hints: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("hints", mode="before")
    @classmethod
    def hints_default(cls, v: Any) -> Any:
        return v or {}


class PromptItem(BaseModel):
    id: str = Field(..., min_length=1)
    user_id: str
    text: str = ""
    processed: bool = False


class ActionLogEntry(BaseModel):
    type: ActionType
    task_id: str
    task_name: str
    detail: str = ""
    timestamp: datetime


class PipelineStage(str, Enum):
    """Stages a detected work item moves through."""

    DETECTED = "detected"
    DEDUPLICATED = "deduplicated"
    ANALYZING = "analyzing"
    SCHEDULING = "scheduling"
    MERGING_TIMELINE = "merging_timeline"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStatus(BaseModel):
    task_id: str
    user_id: str
    stage: PipelineStage
    detail: Optional[str] = None
    timestamp: datetime

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
