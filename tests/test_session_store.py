"""Tests for the in-memory session store."""

import pytest

from planner.domain.models.session_state import ControlFlags, PlanMode, SessionState, Slots


class TestSessionLifecycle:
    """Test create, lookup and completion."""

    @pytest.mark.asyncio
    async def test_create_session_starts_in_intake(self, session_store, owner):
        session = await session_store.create_session(owner.id, PlanMode.SMART)
        assert session.state == SessionState.INTAKE
        assert session.control.current_mode == PlanMode.SMART
        assert session.control.is_first_interaction is True
        assert session.is_complete is False

    @pytest.mark.asyncio
    async def test_get_session_is_owner_scoped(self, session_store, owner, other_owner):
        session = await session_store.create_session(owner.id, PlanMode.QUICK)
        assert await session_store.get_session(owner.id, session.id) is not None
        assert await session_store.get_session(other_owner.id, session.id) is None

    @pytest.mark.asyncio
    async def test_active_session_ignores_completed(self, session_store, owner):
        session = await session_store.create_session(owner.id, PlanMode.QUICK)
        await session_store.complete_session(session.id)
        assert await session_store.get_active_session(owner.id) is None

        stored = await session_store.get_session(owner.id, session.id)
        assert stored.state == SessionState.COMPLETED
        assert stored.is_complete is True

    @pytest.mark.asyncio
    async def test_list_sessions_oldest_first(self, session_store, owner):
        first = await session_store.create_session(owner.id, PlanMode.QUICK)
        second = await session_store.create_session(owner.id, PlanMode.QUICK)
        sessions = await session_store.list_sessions(owner.id)
        assert [s.id for s in sessions] == [first.id, second.id]


class TestUpdateSession:
    """Test partial updates."""

    @pytest.mark.asyncio
    async def test_patch_applies_and_syncs_completion(self, session_store, owner):
        session = await session_store.create_session(owner.id, PlanMode.QUICK)
        updated = await session_store.update_session(session.id, {
            "state": SessionState.COMPLETED,
            "slots": Slots(activity_type="trip"),
            "control": ControlFlags(plan_confirmed=True)
        })
        assert updated.is_complete is True
        assert updated.slots.activity_type == "trip"
        assert updated.control.plan_confirmed is True

    @pytest.mark.asyncio
    async def test_unknown_fields_rejected(self, session_store, owner):
        session = await session_store.create_session(owner.id, PlanMode.QUICK)
        with pytest.raises(ValueError, match="Cannot patch"):
            await session_store.update_session(session.id, {"owner_id": "someone-else"})

    @pytest.mark.asyncio
    async def test_unknown_session(self, session_store):
        with pytest.raises(KeyError):
            await session_store.update_session("missing", {"state": SessionState.GATHERING})

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self, session_store, owner):
        session = await session_store.create_session(owner.id, PlanMode.QUICK)
        loaded = await session_store.get_session(owner.id, session.id)
        loaded.control.plan_confirmed = True

        reloaded = await session_store.get_session(owner.id, session.id)
        assert reloaded.control.plan_confirmed is False
