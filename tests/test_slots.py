"""Tests for slot accumulation."""

from planner.domain.context.slots import (
    detect_activity_type_override, find_missing_slots, get_slot, merge_slots, normalize_slot_key
)
from planner.domain.models.session_state import Slots


class TestMergeSlots:
    """Slots are merged, never wholesale-replaced."""

    def test_adds_new_values(self):
        slots = merge_slots(Slots(activity_type="dinner"), {"location": "Brooklyn"})
        assert slots.activity_type == "dinner"
        assert slots.location == "Brooklyn"

    def test_none_never_erases(self):
        slots = merge_slots(Slots(budget="$50"), {"budget": None, "timing": "Friday"})
        assert slots.budget == "$50"
        assert slots.timing == "Friday"

    def test_nested_values_merge_key_by_key(self):
        current = Slots(location={"city": "Paris", "venue": "Louvre"})
        slots = merge_slots(current, {"location": {"venue": "Orsay"}})
        assert slots.location == {"city": "Paris", "venue": "Orsay"}

    def test_camel_case_keys_are_normalized(self):
        slots = merge_slots(Slots(), {"activityType": "workout", "groupSize": 4})
        assert slots.activity_type == "workout"
        assert slots.as_dict()["group_size"] == 4

    def test_empty_delta_keeps_slots(self):
        current = Slots(activity_type="trip")
        assert merge_slots(current, {}) is current
        assert merge_slots(current, None) is current

    def test_normalize_slot_key(self):
        assert normalize_slot_key("costHint") == "cost_hint"
        assert normalize_slot_key("budget") == "budget"


class TestMissingSlots:
    """Test required slot detection."""

    def test_reports_missing_in_order(self):
        slots = Slots(activity_type="trip", timing="June")
        assert find_missing_slots(slots, ["activity_type", "location", "timing", "budget"]) == [
            "location", "budget"
        ]

    def test_blank_strings_count_as_missing(self):
        slots = Slots(activity_type="trip", location="  ", timing="June", budget="")
        assert find_missing_slots(slots, ["location", "budget"]) == ["location", "budget"]

    def test_nested_values_count_as_filled(self):
        slots = Slots(location={"destination": "Lisbon"})
        assert find_missing_slots(slots, ["location"]) == []
        assert get_slot(slots, "location.destination") == "Lisbon"
        assert get_slot(slots, "location.airport") is None


class TestActivityTypeOverride:
    """The user's own keywords win over the extracted activity type."""

    def test_interview_keywords_override(self):
        assert detect_activity_type_override(
            "I need to prepare for my job interview", {"activity_type": "meeting"}
        ) == "interview_prep"

    def test_matching_type_is_left_alone(self):
        assert detect_activity_type_override(
            "interview tomorrow", {"activityType": "interview"}
        ) is None

    def test_workout_keywords_override(self):
        assert detect_activity_type_override("plan my gym week", {}) == "workout"

    def test_no_keywords(self):
        assert detect_activity_type_override("plan a picnic", {"activity_type": "picnic"}) is None
