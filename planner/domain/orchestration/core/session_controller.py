from typing import TypedDict, Dict, Any, Optional, Literal
import time

import structlog
from langgraph.graph import StateGraph, END

from planner.config import PlannerSettings
from planner.domain.context.slots import detect_activity_type_override, find_missing_slots, merge_slots
from planner.domain.context.state.session_store import SessionStore
from planner.domain.errors import (
    ConfirmationRequired, GatewayFailure, InvalidInput, MaterializationFailure,
    MissingRequiredSlots, SessionNotFound
)
from planner.domain.gateway.language_model_gateway import GatewayResponse, LanguageModelGateway
from planner.domain.intent.intent_classifier import CONFIRMING_INTENTS, IntentClassification, classify_intent
from planner.domain.models.session_state import (
    ConversationSession, ConversationTurn, Intent, MaterializationResult, Owner,
    Plan, PlanMode, Role, SessionState, TurnResult
)
from planner.domain.orchestration.core import replies
from planner.domain.orchestration.materializer.plan_materializer import PlanMaterializer
from planner.infrastructure.observability.logging import metrics, planner_logger

logger = structlog.get_logger(__name__)


class TurnState(TypedDict, total=False):
    """State for the turn graph"""
    owner: Owner
    message: str
    session: ConversationSession
    classification: IntentClassification
    entry_state: SessionState
    gateway_response: Optional[GatewayResponse]
    reply: str
    error: Optional[Dict[str, Any]]
    route: str


class SessionController:
    """Runs conversational planning turns and confirms plans"""

    def __init__(
        self,
        session_store: SessionStore,
        gateway: LanguageModelGateway,
        materializer: PlanMaterializer,
        settings: Optional[PlannerSettings] = None
    ):
        self.session_store = session_store
        self.gateway = gateway
        self.materializer = materializer
        self.settings = settings or PlannerSettings()
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the single-turn workflow graph"""

        workflow = StateGraph(TurnState)

        workflow.add_node("classify_intent", self.classify_intent_node)
        workflow.add_node("replay_plan", self.replay_plan_node)
        workflow.add_node("explain_modes", self.explain_modes_node)
        workflow.add_node("accept_plan", self.accept_plan_node)
        workflow.add_node("request_changes", self.request_changes_node)
        workflow.add_node("prompt_confirmation", self.prompt_confirmation_node)
        workflow.add_node("converse", self.converse_node)
        workflow.add_node("apply_guardrails", self.apply_guardrails_node)
        workflow.add_node("persist_turn", self.persist_turn_node)

        workflow.set_entry_point("classify_intent")

        workflow.add_conditional_edges(
            "classify_intent",
            self.route_after_classification,
            {
                "replay_plan": "replay_plan",
                "explain_modes": "explain_modes",
                "accept_plan": "accept_plan",
                "request_changes": "request_changes",
                "prompt_confirmation": "prompt_confirmation",
                "converse": "converse"
            }
        )

        workflow.add_edge("request_changes", "converse")

        workflow.add_conditional_edges(
            "converse",
            self.check_gateway_result,
            {
                "success": "apply_guardrails",
                "failure": END
            }
        )

        workflow.add_edge("apply_guardrails", "persist_turn")
        workflow.add_edge("replay_plan", "persist_turn")
        workflow.add_edge("explain_modes", "persist_turn")
        workflow.add_edge("accept_plan", "persist_turn")
        workflow.add_edge("prompt_confirmation", "persist_turn")
        workflow.add_edge("persist_turn", END)

        return workflow.compile()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start_conversation(
        self,
        owner: Owner,
        mode: PlanMode = PlanMode.QUICK,
        activity_id: Optional[str] = None
    ) -> ConversationSession:
        """Close the owner's open session, if any, and open a fresh one"""

        existing = await self.session_store.get_active_session(owner.id)
        if existing:
            await self.session_store.complete_session(existing.id)
            planner_logger.log_workflow_transition(
                existing.id, existing.state.value, SessionState.COMPLETED.value,
                condition="superseded_by_new_conversation"
            )

        session = await self.session_store.create_session(owner.id, mode, linked_activity_id=activity_id)
        metrics.increment_counter("session.started", tags={"mode": mode.value})
        return session

    async def advance_conversation(
        self,
        owner: Owner,
        message: str,
        mode: Optional[PlanMode] = None,
        session_id: Optional[str] = None
    ) -> TurnResult:
        """Run one conversational turn for the owner"""

        text = self._validate_message(message)
        session = await self._resolve_session(owner, session_id, mode)

        if mode is not None and session.control.current_mode != mode:
            planner_logger.log_context_update(
                session.id, "control", "mode_switch",
                {"from": session.control.current_mode.value, "to": mode.value}
            )
            session.control.current_mode = mode

        with structlog.contextvars.bound_contextvars(owner_id=owner.id, session_id=session.id):
            final = await self.workflow.ainvoke({
                "owner": owner,
                "message": text,
                "session": session,
                "entry_state": session.state,
                "gateway_response": None,
                "error": None
            })

        metrics.increment_counter("turn.processed", tags={"route": final.get("route", "unknown")})

        if final.get("error"):
            # Nothing was persisted, so report the stored session
            stored = await self.session_store.get_session(owner.id, session.id)
            final["session"] = stored or session
        return self._build_turn_result(final)

    async def confirm_and_materialize(self, owner: Owner, session_id: str) -> MaterializationResult:
        """Materialize the confirmed candidate plan of a session"""

        session = await self._load_open_session(owner, session_id)
        control = session.control

        if not control.plan_confirmed or control.last_intent not in CONFIRMING_INTENTS:
            planner_logger.log_guardrail(
                session.id, "confirmation_required",
                {"plan_confirmed": control.plan_confirmed,
                 "last_intent": control.last_intent.value if control.last_intent else None}
            )
            raise ConfirmationRequired("Plan has not been confirmed in the latest turn")

        plan = session.candidate_plan
        if plan is None or not plan.is_actionable():
            raise ConfirmationRequired("There is no complete plan to create")

        missing = find_missing_slots(session.slots, self.settings.required_slots)
        if missing:
            planner_logger.log_guardrail(session.id, "missing_required_slots", {"missing": missing})
            raise MissingRequiredSlots(missing)

        try:
            result = await self.materializer.materialize(owner, plan, control.linked_activity_id)
        except MaterializationFailure as e:
            if e.activity_id and control.linked_activity_id != e.activity_id:
                # A retry must replace this activity rather than create a second one
                control.linked_activity_id = e.activity_id
                await self.session_store.update_session(session.id, {"control": control})
            raise

        reply = replies.materialized_reply(
            result.activity, len(result.tasks), result.replaced, control.current_mode
        )

        previous_state = session.state
        control.linked_activity_id = result.activity.id
        control.awaiting_plan_confirmation = False
        session.append_turn(Role.ASSISTANT, reply)
        session.transition_to(SessionState.COMPLETED)

        await self.session_store.update_session(session.id, {
            "state": session.state,
            "control": control,
            "conversation_history": session.conversation_history
        })

        planner_logger.log_workflow_transition(
            session.id, previous_state.value, SessionState.COMPLETED.value,
            condition="plan_materialized",
            state_summary=session.get_state_summary()
        )

        return result.model_copy(update={"session_id": session.id, "reply": reply})

    async def get_plan_overview(self, owner: Owner, session_id: str) -> Optional[Plan]:
        """Read-only view of the candidate plan while it awaits confirmation"""

        session = await self._load_open_session(owner, session_id)
        return session.visible_candidate_plan

    async def close_conversation(self, owner: Owner, session_id: str) -> ConversationSession:
        """Explicitly close a session without materializing anything"""

        session = await self._load_open_session(owner, session_id)
        closed = await self.session_store.complete_session(session.id)
        planner_logger.log_workflow_transition(
            session.id, session.state.value, SessionState.COMPLETED.value, condition="closed_by_owner"
        )
        return closed

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def classify_intent_node(self, state: TurnState) -> Dict[str, Any]:
        """Classify the message and update the unclear-reply counter"""

        session = state["session"]
        classification = classify_intent(state["message"])

        if self._in_confirmation(session) and classification.intent == Intent.UNCLEAR:
            session.control.unclear_confirmation_turns += 1
        else:
            session.control.unclear_confirmation_turns = 0

        logger.debug("Intent classified",
                     intent=classification.intent.value,
                     negation=classification.negation,
                     confirmation=classification.confirms_plan)

        return {"classification": classification, "session": session}

    async def replay_plan_node(self, state: TurnState) -> Dict[str, Any]:
        """Show the stored plan again without calling the language model"""

        plan = state["session"].visible_candidate_plan
        return {"reply": replies.overview_reply(plan), "route": "replay_plan"}

    async def explain_modes_node(self, state: TurnState) -> Dict[str, Any]:
        """Explain quick and smart planning modes"""

        return {"reply": replies.HELP_REPLY, "route": "explain_modes"}

    async def accept_plan_node(self, state: TurnState) -> Dict[str, Any]:
        """Record the user's explicit confirmation of the candidate plan"""

        session = state["session"]
        session.control.plan_confirmed = True
        session.control.awaiting_plan_confirmation = False

        planner_logger.log_context_update(session.id, "control", "plan_confirmed")

        return {
            "session": session,
            "reply": replies.accepted_reply(session.candidate_plan),
            "route": "accept_plan"
        }

    async def request_changes_node(self, state: TurnState) -> Dict[str, Any]:
        """Drop back to gathering so the user can amend the plan"""

        session = state["session"]
        session.control.awaiting_plan_confirmation = False
        session.control.plan_confirmed = False
        session.transition_to(SessionState.GATHERING)

        planner_logger.log_context_update(session.id, "control", "changes_requested")

        return {"session": session, "route": "request_changes"}

    async def prompt_confirmation_node(self, state: TurnState) -> Dict[str, Any]:
        """Re-prompt for a clear answer after repeated unclear replies"""

        session = state["session"]
        planner_logger.log_guardrail(
            session.id, "unclear_confirmation_cap",
            {"unclear_turns": session.control.unclear_confirmation_turns}
        )
        metrics.increment_counter("guardrail.unclear_confirmation_cap")

        return {
            "reply": replies.UNCLEAR_CONFIRMATION_REPLY.format(
                overview=session.candidate_plan.render_overview()
            ),
            "route": "prompt_confirmation"
        }

    async def converse_node(self, state: TurnState) -> Dict[str, Any]:
        """Ask the language model to continue the conversation or propose a plan"""

        session = state["session"]
        control = session.control

        history = session.conversation_history + [ConversationTurn(role=Role.USER, text=state["message"])]
        if len(history) > self.settings.history_window:
            history = history[-self.settings.history_window:]

        started = time.perf_counter()
        try:
            response = await self.gateway.propose_or_continue(
                history, session.slots, control.current_mode,
                questions_asked=control.question_count.get(control.current_mode.value, 0),
                domain=control.domain
            )
        except Exception as e:
            failure = e if isinstance(e, GatewayFailure) else GatewayFailure(f"Language model call failed: {e}")
            duration_ms = (time.perf_counter() - started) * 1000
            planner_logger.log_gateway_call(
                session.id, control.current_mode.value, duration_ms, success=False, error=str(e)
            )
            metrics.increment_counter("gateway.failed")
            return {
                "gateway_response": None,
                "reply": replies.RETRY_REPLY,
                "error": failure.to_dict(),
                "route": "gateway_failure"
            }

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency("gateway_call", duration_ms, tags={"mode": control.current_mode.value})
        planner_logger.log_gateway_call(
            session.id, control.current_mode.value, duration_ms,
            ready_to_generate=response.ready_to_generate
        )

        return {"gateway_response": response, "session": session, "route": "converse"}

    async def apply_guardrails_node(self, state: TurnState) -> Dict[str, Any]:
        """Fold the gateway's answer into the session under controller rules"""

        session = state["session"]
        control = session.control
        response = state["gateway_response"]

        if control.plan_confirmed:
            # Any non-confirming turn takes the confirmation back
            control.plan_confirmed = False
            control.awaiting_plan_confirmation = True

        ready = response.ready_to_generate
        if ready and control.is_first_interaction:
            planner_logger.log_guardrail(session.id, "first_message", {"ready_to_generate": True})
            metrics.increment_counter("guardrail.first_message")
            ready = False

        slot_delta = dict(response.updated_slots)
        if "activity_type" in slot_delta or "activityType" in slot_delta or not session.slots.activity_type:
            override = detect_activity_type_override(state["message"], slot_delta)
            if override:
                slot_delta.pop("activityType", None)
                slot_delta["activity_type"] = override
        if slot_delta:
            session.slots = merge_slots(session.slots, slot_delta)
            planner_logger.log_context_update(session.id, "slots", "merge", {"keys": sorted(slot_delta)})

        if response.plan is not None:
            session.candidate_plan = response.plan
        if response.domain:
            control.domain = response.domain

        plan = session.candidate_plan
        if ready and (plan is None or not plan.is_actionable()):
            planner_logger.log_guardrail(session.id, "plan_without_tasks")
            metrics.increment_counter("guardrail.plan_without_tasks")
            ready = False

        reply = response.message
        if ready:
            control.awaiting_plan_confirmation = True
            control.plan_confirmed = False
            session.transition_to(SessionState.CONFIRMING)
            reply = replies.with_confirmation_prompt(reply)
        else:
            mode_key = control.current_mode.value
            control.question_count[mode_key] = control.question_count.get(mode_key, 0) + 1
            if not control.awaiting_plan_confirmation:
                session.transition_to(SessionState.GATHERING)

        control.is_first_interaction = False

        return {"session": session, "reply": reply}

    async def persist_turn_node(self, state: TurnState) -> Dict[str, Any]:
        """Append the exchange and write the session back"""

        session = state["session"]
        classification = state["classification"]

        session.append_turn(Role.USER, state["message"])
        session.append_turn(Role.ASSISTANT, state["reply"])
        session.control.last_intent = classification.intent

        stored = await self.session_store.update_session(session.id, {
            "state": session.state,
            "slots": session.slots,
            "control": session.control,
            "conversation_history": session.conversation_history,
            "candidate_plan": session.candidate_plan
        })

        if stored.state != state["entry_state"]:
            planner_logger.log_workflow_transition(
                session.id, state["entry_state"].value, stored.state.value,
                condition=state.get("route"),
                state_summary=stored.get_state_summary()
            )

        return {"session": stored}

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route_after_classification(self, state: TurnState) -> Literal[
        "replay_plan", "explain_modes", "accept_plan", "request_changes", "prompt_confirmation", "converse"
    ]:
        """Route on intent, session state and confirmation flags"""

        session = state["session"]
        classification = state["classification"]
        has_plan = session.candidate_plan is not None and session.candidate_plan.is_actionable()
        confirming = session.state == SessionState.CONFIRMING and has_plan

        # Outside confirmation "show me a plan for..." is a planning request
        if classification.show_overview and confirming:
            return "replay_plan"

        if self._in_confirmation(session):
            # Same rule confirm_and_materialize checks against last_intent
            if classification.confirms_plan and has_plan:
                return "accept_plan"
            if classification.wants_changes:
                return "request_changes"

        if classification.help:
            return "explain_modes"

        if (
            self._in_confirmation(session)
            and has_plan
            and session.control.unclear_confirmation_turns > self.settings.max_unclear_confirmation_turns
        ):
            return "prompt_confirmation"

        return "converse"

    def check_gateway_result(self, state: TurnState) -> Literal["success", "failure"]:
        """A failed gateway call ends the turn without persisting it"""

        return "failure" if state.get("error") else "success"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _in_confirmation(self, session: ConversationSession) -> bool:
        return session.control.awaiting_plan_confirmation or session.control.plan_confirmed

    def _validate_message(self, message: Any) -> str:
        if not isinstance(message, str):
            raise InvalidInput("Message must be text")
        text = message.strip()
        if not text:
            raise InvalidInput("Message is empty")
        if len(text) > self.settings.max_message_length:
            raise InvalidInput(
                f"Message is longer than {self.settings.max_message_length} characters",
                details={"length": len(text)}
            )
        return text

    async def _resolve_session(
        self,
        owner: Owner,
        session_id: Optional[str],
        mode: Optional[PlanMode]
    ) -> ConversationSession:
        if session_id:
            return await self._load_open_session(owner, session_id)

        session = await self.session_store.get_active_session(owner.id)
        if session is None:
            session = await self.start_conversation(owner, mode or PlanMode.QUICK)
        return session

    async def _load_open_session(self, owner: Owner, session_id: str) -> ConversationSession:
        session = await self.session_store.get_session(owner.id, session_id)
        if session is None or session.is_complete:
            raise SessionNotFound(f"No open session {session_id}", details={"session_id": session_id})
        return session

    def _build_turn_result(self, final: TurnState) -> TurnResult:
        session = final["session"]
        classification = final.get("classification")
        plan = session.visible_candidate_plan

        return TurnResult(
            reply=final["reply"],
            session_id=session.id,
            plan_ready=plan is not None and plan.is_actionable(),
            show_confirm_button=session.control.plan_confirmed,
            state=session.state,
            intent=classification.intent if classification else Intent.UNCLEAR,
            error=final.get("error")
        )
