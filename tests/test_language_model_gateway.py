"""Tests for the chat-model backed gateway."""

import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from planner.domain.errors import GatewayFailure
from planner.domain.gateway.language_model_gateway import ChatModelGateway
from planner.domain.models.session_state import ConversationTurn, PlanMode, Role, Slots

PLAN_REPLY = {
    "message": "Here's a plan for your beach day.",
    "readyToGenerate": True,
    "updatedSlots": {"location": "Santa Monica", "budget": None},
    "domain": "travel",
    "plan": {
        "title": "Beach Day",
        "summary": "Sun and sand",
        "tasks": [
            {"title": "Pack sunscreen", "priority": "critical", "timeEstimate": 10},
            {"title": "Book parking", "costHint": "$20", "description": None},
        ]
    }
}


def turns(*texts):
    roles = [Role.USER, Role.ASSISTANT]
    return [ConversationTurn(role=roles[i % 2], text=text) for i, text in enumerate(texts)]


class ExplodingChatModel:
    async def ainvoke(self, messages):
        raise RuntimeError("connection reset")


class TestParseResponse:
    """Test validation of model replies."""

    def setup_method(self):
        self.gateway = ChatModelGateway(FakeListChatModel(responses=["{}"]))

    def test_parses_camel_case_reply(self):
        response = self.gateway.parse_response(json.dumps(PLAN_REPLY))

        assert response.ready_to_generate is True
        assert response.updated_slots == {"location": "Santa Monica", "budget": None}
        assert response.domain == "travel"
        assert response.plan.title == "Beach Day"
        assert response.plan.description == "Sun and sand"
        assert response.plan.tasks[0].priority.value == "high"
        assert response.plan.tasks[0].time_estimate == "10"
        assert response.plan.tasks[1].cost_hint == "$20"
        assert response.plan.tasks[1].description == ""

    def test_strips_code_fences_and_chatter(self):
        content = "Sure!\n```json\n" + json.dumps({"message": "Where to?"}) + "\n```"
        response = self.gateway.parse_response(content)

        assert response.message == "Where to?"
        assert response.ready_to_generate is False
        assert response.updated_slots == {}
        assert response.plan is None

    def test_null_slots_become_empty(self):
        response = self.gateway.parse_response(json.dumps({"message": "Hi", "updatedSlots": None}))
        assert response.updated_slots == {}

    @pytest.mark.parametrize("content", [
        "no json here",
        "{not valid json}",
        json.dumps({"readyToGenerate": True}),
        json.dumps({"message": ""}),
    ])
    def test_malformed_replies_raise(self, content):
        with pytest.raises(GatewayFailure):
            self.gateway.parse_response(content)


class TestBuildMessages:
    """Test prompt construction."""

    def test_system_prompt_then_history(self):
        gateway = ChatModelGateway(FakeListChatModel(responses=["{}"]))
        messages = gateway.build_messages(
            turns("plan a picnic", "Where?", "Central Park"), Slots(activity_type="picnic"), PlanMode.SMART
        )

        assert isinstance(messages[0], SystemMessage)
        assert "Mode: smart" in messages[0].content
        assert '"activity_type": "picnic"' in messages[0].content
        assert "1 of at most 5" in messages[0].content
        assert "Planning domain: not decided yet" in messages[0].content
        assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]

    def test_session_question_count_and_domain(self):
        gateway = ChatModelGateway(FakeListChatModel(responses=["{}"]))
        messages = gateway.build_messages(
            turns("plan a trip", "Where?", "Rome"), Slots(), PlanMode.QUICK,
            questions_asked=2, domain="travel"
        )

        assert "2 of at most 3" in messages[0].content
        assert "Planning domain: travel" in messages[0].content

    def test_history_window(self):
        gateway = ChatModelGateway(FakeListChatModel(responses=["{}"]), history_window=2)
        messages = gateway.build_messages(turns("a", "b", "c", "d", "e"), Slots(), PlanMode.QUICK)

        assert [m.content for m in messages[1:]] == ["d", "e"]
        assert "(none yet)" in messages[0].content


class TestProposeOrContinue:
    """Test the full call through a chat model."""

    @pytest.mark.asyncio
    async def test_round_trip_through_fake_model(self):
        gateway = ChatModelGateway(FakeListChatModel(responses=[json.dumps(PLAN_REPLY)]))

        response = await gateway.propose_or_continue(turns("beach day please"), Slots(), PlanMode.QUICK)

        assert response.ready_to_generate is True
        assert len(response.plan.tasks) == 2

    @pytest.mark.asyncio
    async def test_model_errors_become_gateway_failures(self):
        gateway = ChatModelGateway(ExplodingChatModel())

        with pytest.raises(GatewayFailure) as exc_info:
            await gateway.propose_or_continue(turns("hi"), Slots(), PlanMode.QUICK)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_malformed_model_output(self):
        gateway = ChatModelGateway(FakeListChatModel(responses=["I can't help with that"]))

        with pytest.raises(GatewayFailure):
            await gateway.propose_or_continue(turns("hi"), Slots(), PlanMode.QUICK)
