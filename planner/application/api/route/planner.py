from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from planner.domain.models.session_state import (
    ConversationSession, MaterializationResult, Owner, Plan, PlanMode, SessionState, TurnResult
)
from planner.domain.orchestration.core.session_controller import SessionController

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/planner", tags=["planner"])


class StartConversationRequest(BaseModel):
    mode: PlanMode = Field(default=PlanMode.QUICK, description="Planning mode")
    activity_id: Optional[str] = Field(None, description="Existing activity to refine in place")


class TurnRequest(BaseModel):
    message: str = Field(description="User message for this turn")
    mode: Optional[PlanMode] = None
    session_id: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    state: SessionState
    mode: PlanMode
    linked_activity_id: Optional[str] = None

    @classmethod
    def from_session(cls, session: ConversationSession) -> "SessionResponse":
        return cls(
            session_id=session.id,
            state=session.state,
            mode=session.control.current_mode,
            linked_activity_id=session.control.linked_activity_id
        )


class PlanOverviewResponse(BaseModel):
    session_id: str
    plan: Optional[Plan] = None


def get_controller(request: Request) -> SessionController:
    return request.app.state.controller


async def get_owner(
    request: Request,
    authorization: Annotated[Optional[str], Header()] = None
) -> Owner:
    """Resolve the authenticated owner or reject the request"""

    try:
        return request.app.state.owner_resolver.resolve(authorization)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"})


OwnerDep = Annotated[Owner, Depends(get_owner)]
ControllerDep = Annotated[SessionController, Depends(get_controller)]


@router.post("/conversations", response_model=SessionResponse)
async def start_conversation(request: StartConversationRequest, owner: OwnerDep, controller: ControllerDep):
    session = await controller.start_conversation(owner, request.mode, request.activity_id)
    return SessionResponse.from_session(session)


@router.post("/conversations/turn", response_model=TurnResult)
async def advance_conversation(request: TurnRequest, owner: OwnerDep, controller: ControllerDep):
    return await controller.advance_conversation(owner, request.message, request.mode, request.session_id)


@router.post("/conversations/{session_id}/confirm", response_model=MaterializationResult)
async def confirm_plan(session_id: str, owner: OwnerDep, controller: ControllerDep):
    return await controller.confirm_and_materialize(owner, session_id)


@router.get("/conversations/{session_id}/plan", response_model=PlanOverviewResponse)
async def get_plan_overview(session_id: str, owner: OwnerDep, controller: ControllerDep):
    plan = await controller.get_plan_overview(owner, session_id)
    return PlanOverviewResponse(session_id=session_id, plan=plan)


@router.delete("/conversations/{session_id}", response_model=SessionResponse)
async def close_conversation(session_id: str, owner: OwnerDep, controller: ControllerDep):
    session = await controller.close_conversation(owner, session_id)
    return SessionResponse.from_session(session)
