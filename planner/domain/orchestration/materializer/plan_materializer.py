"""
Plan materialization.

Turns a confirmed plan into a durable activity with ordered tasks, either by
creating a new activity or by replacing every task of a previously linked one.

Replacement is not wrapped in a transaction. It stays recoverable by
ordering alone: new tasks are created before anything is unlinked, and old
task records are deleted only once every new task is linked. Until that last
step the old records still exist, so a failure can always re-link them.
"""

from typing import Dict, Any, List, Optional
import structlog

from planner.domain.errors import MaterializationFailure, RollbackFailure
from planner.domain.models.activity import Activity, ActivityStatus, Task
from planner.domain.models.session_state import MaterializationResult, Owner, Plan, PlanTask
from planner.domain.persistence.activity_store import ActivityStore
from planner.infrastructure.observability.logging import metrics, planner_logger

logger = structlog.get_logger(__name__)


class PlanMaterializer:
    """Creates or replaces an activity and its ordered task list"""

    def __init__(self, activity_store: ActivityStore):
        self.activity_store = activity_store

    async def materialize(
        self,
        owner: Owner,
        plan: Plan,
        linked_activity_id: Optional[str] = None
    ) -> MaterializationResult:
        """Materialize a confirmed plan for its owner"""

        if linked_activity_id:
            existing = await self.activity_store.get_activity(owner.id, linked_activity_id)
            if existing is not None:
                return await self._replace(owner, existing, plan)

            logger.warning("Linked activity no longer exists, creating a new one",
                           owner_id=owner.id,
                           activity_id=linked_activity_id)

        return await self._create(owner, plan)

    def _activity_fields(self, plan: Plan) -> Dict[str, Any]:
        return {
            "title": plan.title,
            "description": plan.description,
            "category": plan.category or "personal",
        }

    def _task_fields(self, plan: Plan, plan_task: PlanTask) -> Dict[str, Any]:
        return {
            "title": plan_task.title,
            "description": plan_task.description,
            "category": plan_task.category or plan.category or "personal",
            "priority": plan_task.priority,
            "time_estimate": plan_task.time_estimate,
            "cost_hint": plan_task.cost_hint,
        }

    async def _create(self, owner: Owner, plan: Plan) -> MaterializationResult:
        fields = self._activity_fields(plan)
        fields["status"] = ActivityStatus.PLANNING
        activity = await self.activity_store.create_activity(owner.id, fields)

        created: List[Task] = []
        try:
            for position, plan_task in enumerate(plan.tasks):
                task = await self.activity_store.create_task(owner.id, self._task_fields(plan, plan_task))
                created.append(task)
                await self.activity_store.link_task_to_activity(activity.id, task.id, position)

        except Exception as e:
            errors = await self._discard_tasks(owner, activity.id, created)
            if errors:
                self._fail_rollback(owner, activity.id, e, errors)

            metrics.increment_counter("plan.materialization_failed", tags={"path": "create"})
            planner_logger.log_materialization(
                owner.id, activity.id, "create", len(plan.tasks), success=False, error=str(e)
            )
            raise MaterializationFailure(
                f"Failed to create tasks for activity {activity.id}", activity_id=activity.id
            ) from e

        metrics.increment_counter("plan.materialized", tags={"path": "create"})
        planner_logger.log_materialization(owner.id, activity.id, "create", len(created))

        return MaterializationResult(activity=activity, tasks=created, replaced=False)

    async def _replace(self, owner: Owner, existing: Activity, plan: Plan) -> MaterializationResult:
        activity_id = existing.id

        try:
            activity = await self.activity_store.update_activity(
                owner.id, activity_id, self._activity_fields(plan)
            )
        except Exception as e:
            planner_logger.log_materialization(
                owner.id, activity_id, "replace", len(plan.tasks), success=False, error=str(e)
            )
            raise MaterializationFailure(
                f"Failed to update activity {activity_id}", activity_id=activity_id
            ) from e

        new_tasks: List[Task] = []
        old_tasks: List[Task] = []
        unlinked_old: List[str] = []

        try:
            # Create every new task before touching the existing links
            for plan_task in plan.tasks:
                task = await self.activity_store.create_task(owner.id, self._task_fields(plan, plan_task))
                new_tasks.append(task)

            old_tasks = await self.activity_store.get_activity_tasks(owner.id, activity_id)

            # Old task records stay alive until the new set is fully linked
            for task in old_tasks:
                await self.activity_store.unlink_task_from_activity(activity_id, task.id)
                unlinked_old.append(task.id)

            for position, task in enumerate(new_tasks):
                await self.activity_store.link_task_to_activity(activity_id, task.id, position)

        except Exception as e:
            await self._rollback(owner, activity_id, new_tasks, old_tasks, unlinked_old, e)
            metrics.increment_counter("plan.rolled_back")
            planner_logger.log_materialization(
                owner.id, activity_id, "replace", len(plan.tasks), success=False, error=str(e)
            )
            raise MaterializationFailure(
                "Failed to update tasks, changes rolled back", activity_id=activity_id
            ) from e

        for task in old_tasks:
            try:
                await self.activity_store.delete_task(owner.id, task.id)
            except Exception as e:
                # New tasks are already linked; the old record is merely orphaned
                logger.warning("Failed to delete replaced task",
                               owner_id=owner.id,
                               activity_id=activity_id,
                               task_id=task.id,
                               error=str(e))

        tasks = await self.activity_store.get_activity_tasks(owner.id, activity_id)

        metrics.increment_counter("plan.materialized", tags={"path": "replace"})
        planner_logger.log_materialization(owner.id, activity_id, "replace", len(tasks))

        return MaterializationResult(activity=activity, tasks=tasks, replaced=True)

    async def _rollback(
        self,
        owner: Owner,
        activity_id: str,
        new_tasks: List[Task],
        old_tasks: List[Task],
        unlinked_old: List[str],
        cause: Exception
    ):
        """Restore the activity's original task list after a failed replacement"""

        logger.error("Task replacement failed, rolling back",
                     owner_id=owner.id,
                     activity_id=activity_id,
                     new_tasks=len(new_tasks),
                     old_tasks=len(old_tasks),
                     error=str(cause))

        errors = await self._discard_tasks(owner, activity_id, new_tasks)

        for position, task in enumerate(old_tasks):
            if task.id not in unlinked_old:
                continue
            try:
                await self.activity_store.link_task_to_activity(activity_id, task.id, position)
            except Exception as e:
                errors.append({"step": "relink_old_task", "task_id": task.id, "error": str(e)})

        if errors:
            self._fail_rollback(owner, activity_id, cause, errors)

        logger.info("Rolled back to original tasks", activity_id=activity_id, restored=len(unlinked_old))

    async def _discard_tasks(self, owner: Owner, activity_id: str, tasks: List[Task]) -> List[Dict[str, Any]]:
        """Unlink and delete tasks created by a failed attempt; returns the errors met"""

        errors: List[Dict[str, Any]] = []
        for task in tasks:
            try:
                await self.activity_store.unlink_task_from_activity(activity_id, task.id)
            except Exception as e:
                errors.append({"step": "unlink_new_task", "task_id": task.id, "error": str(e)})
            try:
                await self.activity_store.delete_task(owner.id, task.id)
            except Exception as e:
                errors.append({"step": "delete_new_task", "task_id": task.id, "error": str(e)})
        return errors

    def _fail_rollback(self, owner: Owner, activity_id: str, cause: Exception, errors: List[Dict[str, Any]]):
        metrics.increment_counter("plan.rollback_failed")
        planner_logger.log_rollback_failure(owner.id, activity_id, str(cause), errors)
        raise RollbackFailure(
            f"Rollback failed for activity {activity_id}",
            activity_id=activity_id,
            details={"errors": errors, "cause": str(cause)}
        ) from cause
