from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
from datetime import datetime, timezone
import structlog

from planner.domain.models.session_state import (
    ConversationSession, ControlFlags, PlanMode, SessionState
)

logger = structlog.get_logger(__name__)

_PATCHABLE_FIELDS = {
    "state", "slots", "control", "conversation_history", "candidate_plan", "is_complete"
}


class SessionStore(ABC):
    """Durable record per conversation: point lookups and point updates only"""

    @abstractmethod
    async def get_active_session(self, owner_id: str) -> Optional[ConversationSession]:
        """Get the owner's open session, if any"""
        pass

    @abstractmethod
    async def get_session(self, owner_id: str, session_id: str) -> Optional[ConversationSession]:
        """Get a session by id, scoped to its owner"""
        pass

    @abstractmethod
    async def create_session(
        self,
        owner_id: str,
        mode: PlanMode,
        linked_activity_id: Optional[str] = None
    ) -> ConversationSession:
        """Create a fresh intake session"""
        pass

    @abstractmethod
    async def update_session(self, session_id: str, patch: Dict[str, Any]) -> ConversationSession:
        """Apply a partial update and return the stored session"""
        pass

    @abstractmethod
    async def complete_session(self, session_id: str) -> Optional[ConversationSession]:
        """Mark a session completed"""
        pass


class InMemorySessionStore(SessionStore):
    """Session store kept in process memory"""

    def __init__(self):
        self.sessions: Dict[str, ConversationSession] = {}
        self._lock = asyncio.Lock()

    async def get_active_session(self, owner_id: str) -> Optional[ConversationSession]:
        async with self._lock:
            open_sessions = [
                s for s in self.sessions.values()
                if s.owner_id == owner_id and not s.is_complete
            ]
            if not open_sessions:
                return None
            latest = max(open_sessions, key=lambda s: s.created_at)
            return latest.model_copy(deep=True)

    async def get_session(self, owner_id: str, session_id: str) -> Optional[ConversationSession]:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None or session.owner_id != owner_id:
                return None
            return session.model_copy(deep=True)

    async def create_session(
        self,
        owner_id: str,
        mode: PlanMode,
        linked_activity_id: Optional[str] = None
    ) -> ConversationSession:
        session = ConversationSession(
            owner_id=owner_id,
            state=SessionState.INTAKE,
            control=ControlFlags(
                current_mode=mode,
                is_first_interaction=True,
                linked_activity_id=linked_activity_id
            )
        )

        async with self._lock:
            self.sessions[session.id] = session.model_copy(deep=True)

        logger.info("Session created", session_id=session.id, owner_id=owner_id, mode=mode.value)
        return session

    async def update_session(self, session_id: str, patch: Dict[str, Any]) -> ConversationSession:
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch session fields: {sorted(unknown)}")

        async with self._lock:
            current = self.sessions.get(session_id)
            if current is None:
                raise KeyError(session_id)

            data = current.model_dump()
            data.update(patch)
            if "state" in patch:
                data["is_complete"] = SessionState(patch["state"]) == SessionState.COMPLETED
            data["updated_at"] = datetime.now(timezone.utc)

            updated = ConversationSession.model_validate(data)
            self.sessions[session_id] = updated.model_copy(deep=True)
            return updated

    async def complete_session(self, session_id: str) -> Optional[ConversationSession]:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            session.transition_to(SessionState.COMPLETED)
            return session.model_copy(deep=True)

    async def list_sessions(self, owner_id: str) -> List[ConversationSession]:
        """All sessions of an owner, oldest first"""

        async with self._lock:
            owned = [s for s in self.sessions.values() if s.owner_id == owner_id]
            return [s.model_copy(deep=True) for s in sorted(owned, key=lambda s: s.created_at)]
