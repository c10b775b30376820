"""
Turn-level intent classification.

Regex heuristics that decide control flow only (confirm, request changes,
ask for help, replay the plan). Plan content is never extracted here.
"""

import re
from typing import List

from pydantic import BaseModel, ConfigDict

from planner.domain.models.session_state import Intent

# The only tags that count as accepting a plan
CONFIRMING_INTENTS = frozenset({Intent.AFFIRMATIVE, Intent.GENERATE_COMMAND})

_PUNCTUATION = re.compile(r"[!?.,:;]+")
_CLAUSE_BREAK = re.compile(r"[!?.,:;]+|\bbut\b|\bthen\b")
_WHITESPACE = re.compile(r"\s+")

_CONTRACTIONS = [
    (re.compile(r"\blet'?s\b"), "lets"),
    (re.compile(r"\bthat'?s\b"), "thats"),
    (re.compile(r"\bit'?s\b"), "its"),
]

# Positive idioms that contain a bare "no"
_NO_IDIOMS = re.compile(r"\bno (problems?|worries|issues?|concerns?)\b")
_NEGATION_WORDS = re.compile(
    r"\b(don'?t|do not|not|stop|wait|hold on|hold off|never|cancel|abort|nope|nah)\b"
)
_BARE_NO = re.compile(r"\bno\b")

_AFFIRMATIVE = re.compile(
    r"\b(yes|yeah|yep|yup|sure|ok|okay|perfect|great|good|fine|alright|absolutely|"
    r"definitely|sounds? good|looks good|that works|thats fine|lets do( it)?|lets go|"
    r"go ahead|proceed|confirm(ed)?|i'?m comfortable|love it)\b"
)

_GENERATE_COMMAND = re.compile(r"\b(generate|create|make)\b.*\b(plan|activity|it)\b")

_HELP = re.compile(
    r"\bwhat\b.*\bdo(es)?\b.*\bit\b.*\bdo\b|\bhow\b.*\bworks?\b|\bdifference\b.*\b(quick|smart)\b|"
    r"\bwhat\b.*\bis\b.*\b(smart|quick)\b.*\bplan\b|\bexplain\b.*\bmodes?\b|\bhelp\b.*\bunderstand\b"
)

_SHOW_OVERVIEW = re.compile(
    r"\b(show|see|display|view|repeat)\b.*\b(plan|overview|summary)\b|"
    r"\boverview\b.*\bagain\b|\bshow\b.*\bit\b.*\bagain\b|"
    r"\bwhat (was|is) the plan\b|\bremind me\b.*\bplan\b"
)

_CHANGE_REQUEST = re.compile(
    r"\b(change|changes|add|modify|instead|swap|remove|replace|different|"
    r"i'?d like to|can we|could we|what if)\b"
)


class IntentClassification(BaseModel):
    """Result of classifying one user message"""
    model_config = ConfigDict(frozen=True)

    normalized: str
    negation: bool = False
    affirmative: bool = False
    generate_command: bool = False
    help: bool = False
    show_overview: bool = False
    requests_changes: bool = False
    intent: Intent = Intent.UNCLEAR

    @property
    def confirms_plan(self) -> bool:
        return self.intent in CONFIRMING_INTENTS and not self.requests_changes

    @property
    def wants_changes(self) -> bool:
        return self.negation or self.requests_changes


def normalize_message(message: str) -> str:
    """Lower-case, strip punctuation and fold contractions."""
    text = message.lower().replace("’", "'").strip()
    for pattern, replacement in _CONTRACTIONS:
        text = pattern.sub(replacement, text)
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _clauses(message: str) -> List[str]:
    text = message.lower().replace("’", "'")
    for pattern, replacement in _CONTRACTIONS:
        text = pattern.sub(replacement, text)
    return [c.strip() for c in _CLAUSE_BREAK.split(text) if c and c.strip()]


def has_negation(normalized: str) -> bool:
    """Negation words, or a bare "no" outside a positive idiom."""
    if _NEGATION_WORDS.search(normalized):
        return True
    without_idioms = _NO_IDIOMS.sub(" ", normalized)
    return bool(_BARE_NO.search(without_idioms))


def classify_intent(message: str) -> IntentClassification:
    """Classify a raw user message into coarse control-flow intents."""
    normalized = normalize_message(message or "")

    negation = has_negation(normalized)
    affirmative = bool(_AFFIRMATIVE.search(normalized))
    generate_command = any(_GENERATE_COMMAND.search(clause) for clause in _clauses(message or ""))
    help_request = bool(_HELP.search(normalized))
    show_overview = bool(_SHOW_OVERVIEW.search(normalized))
    requests_changes = bool(_CHANGE_REQUEST.search(normalized))

    # Negation is decided before affirmation so it can veto it
    if show_overview:
        intent = Intent.SHOW_OVERVIEW
    elif help_request:
        intent = Intent.HELP
    elif negation:
        intent = Intent.NEGATIVE
    elif affirmative:
        intent = Intent.AFFIRMATIVE
    elif generate_command:
        intent = Intent.GENERATE_COMMAND
    else:
        intent = Intent.UNCLEAR

    return IntentClassification(
        normalized=normalized,
        negation=negation,
        affirmative=affirmative,
        generate_command=generate_command,
        help=help_request,
        show_overview=show_overview,
        requests_changes=requests_changes,
        intent=intent
    )
