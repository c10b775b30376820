from typing import Dict, Any, List, Optional


class PlannerError(Exception):
    """Base error for the planning session engine"""

    code = "planner_error"
    user_message = "Sorry, something went wrong. Please try again."
    retryable = False

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.user_message)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for the outer surface"""
        return {
            "code": self.code,
            "message": str(self),
            "user_message": self.user_message,
            "retryable": self.retryable,
            "details": self.details
        }


class InvalidInput(PlannerError):
    """Empty or malformed message, rejected before the state machine runs"""

    code = "invalid_input"
    user_message = "Please type a message so I can help you plan."


class SessionNotFound(PlannerError):
    """Stale reference to a completed, expired or foreign session"""

    code = "session_not_found"
    user_message = "This conversation has ended. Please start a new conversation."


class ConfirmationRequired(PlannerError):
    """Materialization attempted without an explicit confirming turn"""

    code = "confirmation_required"
    user_message = "Please confirm the plan before I create it."


class MissingRequiredSlots(PlannerError):
    """Materialization attempted before required planning fields are known"""

    code = "missing_required_slots"

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing required details: {', '.join(self.missing)}",
            details={"missing": self.missing}
        )
        self.user_message = (
            "I still need a few details before creating your plan: "
            + ", ".join(self.missing) + "."
        )


class GatewayFailure(PlannerError):
    """The language model call failed or returned malformed content"""

    code = "gateway_failure"
    user_message = "I had trouble thinking that through. Could you send that again?"
    retryable = True


class MaterializationFailure(PlannerError):
    """Task replacement failed and was rolled back cleanly"""

    code = "materialization_failure"
    user_message = "Your changes were not saved. Please try again."
    retryable = True

    def __init__(
        self,
        message: Optional[str] = None,
        activity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.activity_id = activity_id
        if activity_id:
            self.details.setdefault("activity_id", activity_id)


class RollbackFailure(PlannerError):
    """Rollback itself failed; durable state needs manual reconciliation"""

    code = "rollback_failure"
    user_message = "Something went wrong while saving your plan and it needs attention from support."
    retryable = False

    def __init__(
        self,
        message: Optional[str] = None,
        activity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.activity_id = activity_id
        if activity_id:
            self.details.setdefault("activity_id", activity_id)
