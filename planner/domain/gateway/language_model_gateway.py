from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import json
import re
import time

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_validator

from planner.domain.errors import GatewayFailure
from planner.domain.gateway.prompts import MODE_GUIDANCE, PLANNER_SYSTEM_PROMPT
from planner.domain.models.session_state import ConversationTurn, Plan, PlanMode, Role, Slots

logger = structlog.get_logger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class GatewayResponse(BaseModel):
    """Structured reply of the language model for one turn"""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    ready_to_generate: bool = Field(False, validation_alias=AliasChoices("ready_to_generate", "readyToGenerate"))
    updated_slots: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("updated_slots", "updatedSlots")
    )
    plan: Optional[Plan] = Field(None, validation_alias=AliasChoices("plan", "finalPlan"))
    domain: Optional[str] = None

    @field_validator("updated_slots", mode="before")
    @classmethod
    def _empty_slots(cls, value: Any) -> Any:
        return value if value is not None else {}


class LanguageModelGateway(ABC):
    """Opaque language model collaborator: conversation in, suggestion out"""

    @abstractmethod
    async def propose_or_continue(
        self,
        history: List[ConversationTurn],
        slots: Slots,
        mode: PlanMode,
        questions_asked: Optional[int] = None,
        domain: Optional[str] = None
    ) -> GatewayResponse:
        """Continue the conversation or propose a plan.

        Args:
            questions_asked: follow-up questions already asked in this mode
            domain: planning domain reported on an earlier turn

        Raises:
            GatewayFailure: if the call fails or returns malformed content
        """
        pass


class ChatModelGateway(LanguageModelGateway):
    """Gateway backed by a LangChain chat model that answers in JSON"""

    def __init__(
        self,
        chat_model: BaseChatModel,
        history_window: int = 20,
        max_questions: Optional[Dict[str, int]] = None
    ):
        self.chat_model = chat_model
        self.history_window = history_window
        self.max_questions = max_questions or {PlanMode.QUICK.value: 3, PlanMode.SMART.value: 5}

    async def propose_or_continue(
        self,
        history: List[ConversationTurn],
        slots: Slots,
        mode: PlanMode,
        questions_asked: Optional[int] = None,
        domain: Optional[str] = None
    ) -> GatewayResponse:
        messages = self.build_messages(history, slots, mode, questions_asked, domain)

        started = time.perf_counter()
        try:
            result = await self.chat_model.ainvoke(messages)
        except Exception as e:
            logger.error("Chat model call failed", mode=mode.value, error=str(e))
            raise GatewayFailure(f"Language model call failed: {e}") from e

        logger.debug("Chat model replied",
                     mode=mode.value,
                     duration_ms=(time.perf_counter() - started) * 1000)

        return self.parse_response(result.content)

    def build_messages(
        self,
        history: List[ConversationTurn],
        slots: Slots,
        mode: PlanMode,
        questions_asked: Optional[int] = None,
        domain: Optional[str] = None
    ) -> List[BaseMessage]:
        """System prompt plus the most recent conversation turns"""

        if questions_asked is None:
            questions_asked = sum(1 for turn in history if turn.role == Role.ASSISTANT)
        system = PLANNER_SYSTEM_PROMPT.format(
            mode=mode.value,
            mode_guidance=MODE_GUIDANCE[mode.value],
            questions_asked=questions_asked,
            max_questions=self.max_questions.get(mode.value, 3),
            domain=domain or "not decided yet",
            slots=json.dumps(slots.as_dict(), indent=2, default=str) if slots.as_dict() else "(none yet)"
        )

        recent = history[-self.history_window:] if len(history) > self.history_window else history
        messages: List[BaseMessage] = [SystemMessage(content=system)]
        for turn in recent:
            if turn.role == Role.USER:
                messages.append(HumanMessage(content=turn.text))
            else:
                messages.append(AIMessage(content=turn.text))
        return messages

    def parse_response(self, content: Any) -> GatewayResponse:
        """Validate the model's JSON reply"""

        text = _content_text(content).strip()
        text = _CODE_FENCE.sub("", text).strip()

        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise GatewayFailure("Language model reply contained no JSON object",
                                 details={"reply": text[:200]})

        try:
            payload = json.loads(text[start:end + 1])
            return GatewayResponse.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as e:
            raise GatewayFailure(f"Malformed language model reply: {e}",
                                 details={"reply": text[:200]}) from e


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")
