from typing import Dict, Any, List, Optional, Iterable
import re
import structlog

from planner.domain.models.session_state import Slots

logger = structlog.get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

# Keyword families whose presence in the user's own words overrides the
# activity type extracted by the language model
_ACTIVITY_OVERRIDES = [
    ("interview_prep", re.compile(r"\binterview(s|ing)?\b|\binterview prep\b|\bprepare for\b.*\binterview\b")),
    ("learning", re.compile(r"\b(study|learn|course|education|prep for exam|test prep)\b")),
    ("workout", re.compile(r"\b(workout|exercise|gym|fitness|training session)\b")),
    ("wellness", re.compile(r"\b(meditation|yoga|mindfulness|breathing exercise)\b")),
]
_ACTIVITY_ALIASES = {
    "interview_prep": {"interview_prep", "interview"},
}


def normalize_slot_key(key: str) -> str:
    """activityType -> activity_type"""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _deep_merge(current: Dict[str, Any], delta: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current)
    for key, value in delta.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_slots(current: Slots, delta: Optional[Dict[str, Any]]) -> Slots:
    """Merge a slot delta into the accumulated slots.

    Slots are never wholesale-replaced: a None value never erases a known
    value and nested mappings are merged key by key.
    """
    if not delta:
        return current

    normalized = {normalize_slot_key(str(k)): v for k, v in delta.items()}
    merged = _deep_merge(current.as_dict(), normalized)
    return Slots.model_validate(merged)


def _is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (dict, list, tuple, set)):
        return any(_is_filled(v) for v in (value.values() if isinstance(value, dict) else value))
    return True


def get_slot(slots: Slots, path: str) -> Any:
    """Resolve a dotted slot path such as "location.destination"."""
    value: Any = slots.as_dict()
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def find_missing_slots(slots: Slots, required: Iterable[str]) -> List[str]:
    """Required slot names that have no usable value yet."""
    return [name for name in required if not _is_filled(get_slot(slots, name))]


def detect_activity_type_override(message: str, slots_delta: Optional[Dict[str, Any]]) -> Optional[str]:
    """Activity type implied by the user's own keywords, when the model disagrees."""
    text = (message or "").lower()
    current = ""
    if slots_delta:
        current = str(slots_delta.get("activity_type") or slots_delta.get("activityType") or "").lower()

    for activity_type, pattern in _ACTIVITY_OVERRIDES:
        if pattern.search(text):
            if current in _ACTIVITY_ALIASES.get(activity_type, {activity_type}):
                return None
            logger.info("Overriding extracted activity type",
                        extracted=current or None,
                        override=activity_type)
            return activity_type
    return None
