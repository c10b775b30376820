"""Shared test fixtures for the planner test suite."""

from typing import Any, Dict, Iterable, List, Optional

import pytest

from planner.config import PlannerSettings
from planner.domain.context.state.session_store import InMemorySessionStore
from planner.domain.gateway.language_model_gateway import GatewayResponse, LanguageModelGateway
from planner.domain.models.session_state import ConversationTurn, Owner, Plan, PlanMode, PlanTask, Slots
from planner.domain.orchestration.core.session_controller import SessionController
from planner.domain.orchestration.materializer.plan_materializer import PlanMaterializer
from planner.domain.persistence.activity_store import InMemoryActivityStore
from planner.infrastructure.observability.logging import metrics

FULL_SLOTS = {
    "activity_type": "beach day",
    "location": "Santa Monica",
    "timing": "Saturday",
    "budget": "$100",
}


def make_plan(title: str = "Beach Day", task_count: int = 3) -> Plan:
    return Plan(
        title=title,
        description="A relaxed day at the beach",
        category="leisure",
        tasks=[
            PlanTask(title=f"Step {i + 1}", description=f"Do step {i + 1}", time_estimate="30 min")
            for i in range(task_count)
        ]
    )


def ask(message: str = "Tell me more?", **slots: Any) -> GatewayResponse:
    """Gateway reply that keeps gathering details"""
    return GatewayResponse(message=message, updated_slots=slots)


def propose(plan: Optional[Plan] = None, message: str = "Here is your plan.", **slots: Any) -> GatewayResponse:
    """Gateway reply that proposes a plan"""
    return GatewayResponse(
        message=message,
        ready_to_generate=True,
        updated_slots=slots,
        plan=plan if plan is not None else make_plan()
    )


class ScriptedGateway(LanguageModelGateway):
    """Gateway that replays queued responses and records every call."""

    def __init__(self, responses: Optional[Iterable[Any]] = None):
        self.responses: List[Any] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any):
        self.responses.extend(responses)

    async def propose_or_continue(
        self,
        history: List[ConversationTurn],
        slots: Slots,
        mode: PlanMode,
        questions_asked: Optional[int] = None,
        domain: Optional[str] = None
    ) -> GatewayResponse:
        self.calls.append({
            "history": list(history),
            "slots": slots,
            "mode": mode,
            "questions_asked": questions_asked,
            "domain": domain
        })
        if not self.responses:
            return ask("Could you tell me a bit more?")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FlakyActivityStore(InMemoryActivityStore):
    """In-memory store that fails selected link calls once armed."""

    def __init__(self):
        super().__init__()
        self.fail_links_on: set = set()
        self.fail_deletes = False
        self.link_calls = 0

    def arm(self, fail_links_on: Iterable[int] = (), fail_deletes: bool = False):
        self.fail_links_on = set(fail_links_on)
        self.fail_deletes = fail_deletes
        self.link_calls = 0

    def disarm(self):
        self.arm()

    async def link_task_to_activity(self, activity_id: str, task_id: str, position: int) -> None:
        self.link_calls += 1
        if self.link_calls in self.fail_links_on:
            raise RuntimeError(f"link call {self.link_calls} failed")
        await super().link_task_to_activity(activity_id, task_id, position)

    async def delete_task(self, owner_id: str, task_id: str) -> bool:
        if self.fail_deletes:
            raise RuntimeError("delete failed")
        return await super().delete_task(owner_id, task_id)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Give every test a clean metrics collector."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def owner():
    return Owner(id="owner-1")


@pytest.fixture
def other_owner():
    return Owner(id="owner-2")


@pytest.fixture
def settings():
    return PlannerSettings()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def activity_store():
    return FlakyActivityStore()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def materializer(activity_store):
    return PlanMaterializer(activity_store)


@pytest.fixture
def controller(session_store, gateway, materializer, settings):
    return SessionController(session_store, gateway, materializer, settings)
