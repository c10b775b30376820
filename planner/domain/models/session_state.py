from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator
from datetime import datetime, timezone
from enum import Enum
import uuid

from planner.domain.models.activity import Activity, Task, TaskPriority


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Conversation session lifecycle"""
    INTAKE = "intake"
    GATHERING = "gathering"
    CONFIRMING = "confirming"
    COMPLETED = "completed"


class PlanMode(str, Enum):
    """Planning mode requested by the user"""
    QUICK = "quick"
    SMART = "smart"


class Intent(str, Enum):
    """Coarse control-flow intent of a single user message"""
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    GENERATE_COMMAND = "generate_command"
    HELP = "help"
    SHOW_OVERVIEW = "show_overview"
    UNCLEAR = "unclear"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Owner(BaseModel):
    """Explicit owner identity passed through every call"""
    id: str = Field(min_length=1, description="Authenticated owner identifier")


class ConversationTurn(BaseModel):
    """One entry of the append-only conversation history"""
    role: Role
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Slots(BaseModel):
    """Business data accumulated across turns"""
    model_config = ConfigDict(extra="allow")

    activity_type: Optional[str] = Field(None, description="What is being planned")
    location: Optional[Any] = Field(None, description="Where it happens")
    timing: Optional[Any] = Field(None, description="When it happens")
    budget: Optional[Any] = Field(None, description="How much may be spent")

    def as_dict(self) -> Dict[str, Any]:
        """Known and extra slots, without empty values"""
        return self.model_dump(exclude_none=True)


class ControlFlags(BaseModel):
    """Machine bookkeeping for the session, kept apart from slots"""
    awaiting_plan_confirmation: bool = False
    plan_confirmed: bool = False
    is_first_interaction: bool = True
    current_mode: PlanMode = Field(default=PlanMode.QUICK)
    linked_activity_id: Optional[str] = Field(None, description="Activity materialized or refined by this session")
    last_intent: Optional[Intent] = None
    question_count: Dict[str, int] = Field(default_factory=lambda: {PlanMode.QUICK.value: 0, PlanMode.SMART.value: 0})
    unclear_confirmation_turns: int = 0
    domain: Optional[str] = None


class PlanTask(BaseModel):
    """A single task of a candidate plan"""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    description: str = ""
    category: Optional[str] = None
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    time_estimate: Optional[str] = Field(None, validation_alias=AliasChoices("time_estimate", "timeEstimate"))
    cost_hint: Optional[str] = Field(None, validation_alias=AliasChoices("cost_hint", "costHint", "cost"))

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("critical", "urgent"):
                return TaskPriority.HIGH
            if value not in {p.value for p in TaskPriority}:
                return TaskPriority.MEDIUM
        return value or TaskPriority.MEDIUM

    @field_validator("time_estimate", "cost_hint", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, value: Any) -> Any:
        return value if value is not None else ""


class Plan(BaseModel):
    """Candidate plan proposed by the language model, not persisted until confirmed"""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field("My Plan", min_length=1)
    description: str = Field("", validation_alias=AliasChoices("description", "summary"))
    category: Optional[str] = "personal"
    tasks: List[PlanTask] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, value: Any) -> Any:
        return value if value is not None else ""

    def is_actionable(self) -> bool:
        """A plan may be confirmed only when it carries at least one task"""
        return len(self.tasks) > 0

    def render_overview(self) -> str:
        """Markdown overview used when replaying the plan"""
        lines = [f"**{self.title}**"]
        if self.description:
            lines.append(self.description)
        lines.append("")
        for idx, task in enumerate(self.tasks, start=1):
            line = f"{idx}. **{task.title}**"
            if task.time_estimate:
                line += f" ({task.time_estimate})"
            if task.description:
                line += f" - {task.description}"
            lines.append(line)
        return "\n".join(lines)


class ConversationSession(BaseModel):
    """Durable record of one planning dialogue"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Session identifier")
    owner_id: str = Field(description="Owner of the session")
    state: SessionState = Field(default=SessionState.INTAKE)
    slots: Slots = Field(default_factory=Slots)
    control: ControlFlags = Field(default_factory=ControlFlags)
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    candidate_plan: Optional[Plan] = None
    is_complete: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def visible_candidate_plan(self) -> Optional[Plan]:
        """The candidate plan, legible only while confirming"""
        if self.state == SessionState.CONFIRMING:
            return self.candidate_plan
        return None

    def transition_to(self, state: SessionState):
        """Move to a new state and keep the completion mirror in sync"""
        self.state = state
        self.is_complete = state == SessionState.COMPLETED
        self.updated_at = _utcnow()

    def append_turn(self, role: Role, text: str):
        """Append to the conversation history"""
        self.conversation_history.append(ConversationTurn(role=role, text=text))
        self.updated_at = _utcnow()

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current session"""
        return {
            "session_id": self.id,
            "state": self.state.value,
            "turns": len(self.conversation_history),
            "slots": sorted(self.slots.as_dict().keys()),
            "awaiting_plan_confirmation": self.control.awaiting_plan_confirmation,
            "plan_confirmed": self.control.plan_confirmed,
            "has_candidate_plan": self.candidate_plan is not None,
            "last_activity": self.updated_at.isoformat()
        }


class TurnResult(BaseModel):
    """Outcome of one conversational turn"""
    reply: str
    session_id: str
    plan_ready: bool = False
    show_confirm_button: bool = False
    state: SessionState
    intent: Intent = Field(default=Intent.UNCLEAR)
    error: Optional[Dict[str, Any]] = Field(None, description="Recoverable error details when the turn can be retried")


class MaterializationResult(BaseModel):
    """Durable records produced by confirming a plan"""
    activity: Activity
    tasks: List[Task] = Field(default_factory=list)
    replaced: bool = Field(False, description="True when an existing activity's tasks were replaced")
    session_id: Optional[str] = None
    reply: str = ""
