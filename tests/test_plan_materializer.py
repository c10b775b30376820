"""Tests for plan materialization: create, replace and rollback."""

import pytest

from conftest import make_plan
from planner.domain.errors import MaterializationFailure, RollbackFailure
from planner.domain.models.activity import ActivityStatus, TaskPriority
from planner.domain.models.session_state import Plan, PlanTask
from planner.infrastructure.observability.logging import metrics


class TestCreatePath:
    """Test materializing a plan into a new activity."""

    @pytest.mark.asyncio
    async def test_creates_activity_with_ordered_tasks(self, materializer, activity_store, owner):
        result = await materializer.materialize(owner, make_plan(task_count=3))

        assert result.replaced is False
        assert result.activity.title == "Beach Day"
        assert result.activity.status == ActivityStatus.PLANNING
        assert result.activity.owner_id == owner.id

        tasks = await activity_store.get_activity_tasks(owner.id, result.activity.id)
        assert [t.title for t in tasks] == ["Step 1", "Step 2", "Step 3"]
        assert metrics.get_metrics_summary()["plan.materialized"] == 1

    @pytest.mark.asyncio
    async def test_tasks_inherit_plan_category(self, materializer, activity_store, owner):
        plan = Plan(
            title="Study",
            category="education",
            tasks=[PlanTask(title="Read"), PlanTask(title="Practice", category="drills", priority="urgent")]
        )
        result = await materializer.materialize(owner, plan)

        read, practice = result.tasks
        assert read.category == "education"
        assert practice.category == "drills"
        assert practice.priority == TaskPriority.HIGH

    @pytest.mark.asyncio
    async def test_missing_linked_activity_falls_back_to_create(self, materializer, owner):
        result = await materializer.materialize(owner, make_plan(), linked_activity_id="gone")
        assert result.replaced is False
        assert result.activity.id != "gone"

    @pytest.mark.asyncio
    async def test_create_failure_cleans_up_tasks(self, materializer, activity_store, owner):
        activity_store.arm(fail_links_on=[2])

        with pytest.raises(MaterializationFailure) as exc_info:
            await materializer.materialize(owner, make_plan(task_count=3))

        activity_id = exc_info.value.activity_id
        assert activity_id is not None
        assert await activity_store.get_activity(owner.id, activity_id) is not None
        assert await activity_store.get_activity_tasks(owner.id, activity_id) == []
        assert activity_store.tasks == {}


class TestReplacePath:
    """Test replacing the tasks of an existing activity."""

    @pytest.mark.asyncio
    async def test_replaces_tasks_in_place(self, materializer, activity_store, owner):
        first = await materializer.materialize(owner, make_plan(task_count=2))
        old_ids = {t.id for t in first.tasks}

        result = await materializer.materialize(
            owner, make_plan(title="Beach Day v2", task_count=4), linked_activity_id=first.activity.id
        )

        assert result.replaced is True
        assert result.activity.id == first.activity.id
        assert result.activity.title == "Beach Day v2"
        assert [t.title for t in result.tasks] == ["Step 1", "Step 2", "Step 3", "Step 4"]
        assert not old_ids & set(activity_store.tasks)

    @pytest.mark.asyncio
    async def test_link_failure_rolls_back_to_original_tasks(self, materializer, activity_store, owner):
        original = await materializer.materialize(owner, make_plan(title="Original", task_count=3))
        original_ids = [t.id for t in original.tasks]

        # Fails after two of the five new tasks are linked
        activity_store.arm(fail_links_on=[3])

        with pytest.raises(MaterializationFailure, match="rolled back"):
            await materializer.materialize(owner, make_plan(task_count=5), linked_activity_id=original.activity.id)

        tasks = await activity_store.get_activity_tasks(owner.id, original.activity.id)
        assert [t.id for t in tasks] == original_ids
        assert set(activity_store.tasks) == set(original_ids)
        assert metrics.get_metrics_summary()["plan.rolled_back"] == 1

    @pytest.mark.asyncio
    async def test_rollback_failure_is_distinct(self, materializer, activity_store, owner):
        original = await materializer.materialize(owner, make_plan(task_count=3))

        # The first re-link of an old task fails too
        activity_store.arm(fail_links_on=[3, 4])

        with pytest.raises(RollbackFailure) as exc_info:
            await materializer.materialize(owner, make_plan(task_count=5), linked_activity_id=original.activity.id)

        assert exc_info.value.activity_id == original.activity.id
        assert exc_info.value.details["errors"][0]["step"] == "relink_old_task"
        assert exc_info.value.retryable is False
        assert metrics.get_metrics_summary()["plan.rollback_failed"] == 1

    @pytest.mark.asyncio
    async def test_old_task_delete_failure_is_not_fatal(self, materializer, activity_store, owner):
        original = await materializer.materialize(owner, make_plan(task_count=2))
        activity_store.arm(fail_deletes=True)

        result = await materializer.materialize(owner, make_plan(task_count=3), linked_activity_id=original.activity.id)

        assert result.replaced is True
        assert len(result.tasks) == 3
        # Orphaned old records remain but are no longer linked
        assert {t.id for t in original.tasks} <= set(activity_store.tasks)
