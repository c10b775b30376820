from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class TaskPriority(str, Enum):
    """Task priority levels"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActivityStatus(str, Enum):
    """Lifecycle of a user-visible activity"""
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Activity(BaseModel):
    """Durable, user-visible activity that groups an ordered list of tasks"""
    id: str = Field(default_factory=_new_id, description="Unique activity identifier")
    owner_id: str = Field(description="Owner of the activity")
    title: str
    description: str = ""
    category: str = "personal"
    status: ActivityStatus = Field(default=ActivityStatus.PLANNING)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Task(BaseModel):
    """Durable task record; linked to at most one activity at a time"""
    id: str = Field(default_factory=_new_id, description="Unique task identifier")
    owner_id: str
    title: str
    description: str = ""
    category: str = "personal"
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    time_estimate: Optional[str] = None
    cost_hint: Optional[str] = None
    completed: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class ActivityTaskLink(BaseModel):
    """Ordered link between an activity and one of its tasks"""
    activity_id: str
    task_id: str
    position: int = Field(ge=0)
