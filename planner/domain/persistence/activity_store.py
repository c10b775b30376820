from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
from datetime import datetime, timezone
import structlog

from planner.domain.models.activity import Activity, ActivityStatus, ActivityTaskLink, Task

logger = structlog.get_logger(__name__)

_ACTIVITY_FIELDS = {"title", "description", "category", "status"}


class ActivityStore(ABC):
    """Persistence collaborator for activities, tasks and their ordered links"""

    @abstractmethod
    async def create_activity(self, owner_id: str, fields: Dict[str, Any]) -> Activity:
        pass

    @abstractmethod
    async def get_activity(self, owner_id: str, activity_id: str) -> Optional[Activity]:
        pass

    @abstractmethod
    async def update_activity(self, owner_id: str, activity_id: str, fields: Dict[str, Any]) -> Activity:
        pass

    @abstractmethod
    async def get_activity_tasks(self, owner_id: str, activity_id: str) -> List[Task]:
        """Tasks currently linked to the activity, in link order"""
        pass

    @abstractmethod
    async def create_task(self, owner_id: str, fields: Dict[str, Any]) -> Task:
        """Create an unlinked task record"""
        pass

    @abstractmethod
    async def link_task_to_activity(self, activity_id: str, task_id: str, position: int) -> None:
        pass

    @abstractmethod
    async def unlink_task_from_activity(self, activity_id: str, task_id: str) -> bool:
        """Remove the link only; the task record survives"""
        pass

    @abstractmethod
    async def delete_task(self, owner_id: str, task_id: str) -> bool:
        pass


class InMemoryActivityStore(ActivityStore):
    """Activity store kept in process memory"""

    def __init__(self):
        self.activities: Dict[str, Activity] = {}
        self.tasks: Dict[str, Task] = {}
        self.links: Dict[str, List[ActivityTaskLink]] = {}
        self._lock = asyncio.Lock()

    async def create_activity(self, owner_id: str, fields: Dict[str, Any]) -> Activity:
        data = {k: v for k, v in fields.items() if k in _ACTIVITY_FIELDS and v is not None}
        activity = Activity(owner_id=owner_id, **data)

        async with self._lock:
            self.activities[activity.id] = activity
            self.links[activity.id] = []

        return activity.model_copy()

    async def get_activity(self, owner_id: str, activity_id: str) -> Optional[Activity]:
        async with self._lock:
            activity = self.activities.get(activity_id)
            if activity is None or activity.owner_id != owner_id:
                return None
            return activity.model_copy()

    async def update_activity(self, owner_id: str, activity_id: str, fields: Dict[str, Any]) -> Activity:
        async with self._lock:
            activity = self.activities.get(activity_id)
            if activity is None or activity.owner_id != owner_id:
                raise KeyError(activity_id)

            changes = {k: v for k, v in fields.items() if k in _ACTIVITY_FIELDS and v is not None}
            if "status" in changes:
                changes["status"] = ActivityStatus(changes["status"])
            changes["updated_at"] = datetime.now(timezone.utc)

            updated = activity.model_copy(update=changes)
            self.activities[activity_id] = updated
            return updated.model_copy()

    async def get_activity_tasks(self, owner_id: str, activity_id: str) -> List[Task]:
        async with self._lock:
            activity = self.activities.get(activity_id)
            if activity is None or activity.owner_id != owner_id:
                return []
            ordered = sorted(self.links.get(activity_id, []), key=lambda link: link.position)
            return [self.tasks[link.task_id].model_copy() for link in ordered if link.task_id in self.tasks]

    async def create_task(self, owner_id: str, fields: Dict[str, Any]) -> Task:
        data = {k: v for k, v in fields.items() if v is not None and k in Task.model_fields}
        data.pop("id", None)
        data.pop("owner_id", None)
        task = Task(owner_id=owner_id, **data)

        async with self._lock:
            self.tasks[task.id] = task

        return task.model_copy()

    async def link_task_to_activity(self, activity_id: str, task_id: str, position: int) -> None:
        async with self._lock:
            if activity_id not in self.activities:
                raise KeyError(activity_id)
            if task_id not in self.tasks:
                raise KeyError(task_id)

            for other_id, links in self.links.items():
                if any(link.task_id == task_id for link in links):
                    if other_id == activity_id:
                        return
                    raise ValueError(f"Task {task_id} is already linked to activity {other_id}")

            self.links[activity_id].append(
                ActivityTaskLink(activity_id=activity_id, task_id=task_id, position=position)
            )

    async def unlink_task_from_activity(self, activity_id: str, task_id: str) -> bool:
        async with self._lock:
            if activity_id not in self.links:
                return False
            links = self.links[activity_id]
            remaining = [link for link in links if link.task_id != task_id]
            self.links[activity_id] = remaining
            return len(remaining) != len(links)

    async def delete_task(self, owner_id: str, task_id: str) -> bool:
        async with self._lock:
            task = self.tasks.get(task_id)
            if task is None or task.owner_id != owner_id:
                return False

            del self.tasks[task_id]
            for activity_id, links in self.links.items():
                self.links[activity_id] = [link for link in links if link.task_id != task_id]
            return True
