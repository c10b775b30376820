"""Planner configuration loaded from the environment."""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from planner.infrastructure.security.owner import parse_token_table

DEFAULT_REQUIRED_SLOTS = ["activity_type", "location", "timing", "budget"]


class PlannerSettings(BaseModel):
    """Runtime settings for the planning session engine"""
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "planner"

    history_window: int = Field(20, ge=1, description="Turns sent to the language model")
    max_message_length: int = Field(4000, ge=1)
    quick_max_questions: int = Field(3, ge=0)
    smart_max_questions: int = Field(5, ge=0)
    max_unclear_confirmation_turns: int = Field(3, ge=1, description="Unclear replies tolerated while confirming")
    required_slots: List[str] = Field(default_factory=lambda: list(DEFAULT_REQUIRED_SLOTS))
    owner_tokens: Dict[str, str] = Field(default_factory=dict, description="Bearer token to owner id")
    dev_owner_tokens: bool = Field(False, description="Trust unknown bearer tokens as owner ids")

    def max_questions(self, mode: str) -> int:
        return self.smart_max_questions if mode == "smart" else self.quick_max_questions


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings(env_file: Optional[str] = None) -> PlannerSettings:
    """Build settings from PLANNER_* environment variables (and an optional .env file)."""
    load_dotenv(env_file)

    required = os.getenv("PLANNER_REQUIRED_SLOTS")
    return PlannerSettings(
        log_level=os.getenv("PLANNER_LOG_LEVEL", "INFO"),
        log_format=os.getenv("PLANNER_LOG_FORMAT", "json"),
        service_name=os.getenv("PLANNER_SERVICE_NAME", "planner"),
        history_window=_env_int("PLANNER_HISTORY_WINDOW", 20),
        max_message_length=_env_int("PLANNER_MAX_MESSAGE_LENGTH", 4000),
        quick_max_questions=_env_int("PLANNER_QUICK_MAX_QUESTIONS", 3),
        smart_max_questions=_env_int("PLANNER_SMART_MAX_QUESTIONS", 5),
        max_unclear_confirmation_turns=_env_int("PLANNER_MAX_UNCLEAR_CONFIRMATION_TURNS", 3),
        required_slots=[s.strip() for s in required.split(",") if s.strip()] if required else list(DEFAULT_REQUIRED_SLOTS),
        owner_tokens=parse_token_table(os.getenv("PLANNER_OWNER_TOKENS")),
        dev_owner_tokens=_env_bool("PLANNER_DEV_OWNER_TOKENS"),
    )
