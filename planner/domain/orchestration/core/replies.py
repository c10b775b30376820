import re

from planner.domain.models.activity import Activity
from planner.domain.models.session_state import Plan, PlanMode

CONFIRMATION_PROMPT = (
    "**Are you comfortable with this plan?** "
    "(Yes to proceed, or tell me what you'd like to add/change)"
)

HELP_REPLY = """**Here's how I can help you plan:**

**Smart Plan mode**
- Conversational and thorough planning
- Asks detailed clarifying questions (at most 5, often just 3)
- Great for complex activities such as trips, events or work projects
- Always asks for your confirmation before creating the plan

**Quick Plan mode**
- Fast and direct suggestions
- Minimal questions (at most 3 follow-ups)
- Great when you already know the details

Try saying "help me plan dinner" in either mode to see the difference."""

RETRY_REPLY = "Sorry, I had trouble with that one. Could you send your last message again?"

UNCLEAR_CONFIRMATION_REPLY = (
    "I want to be sure before I create anything. Here is the plan again:\n\n"
    "{overview}\n\n"
    "Please answer **yes** to create it, or tell me what you'd like to change."
)

_ALREADY_ASKED = re.compile(
    r"are you comfortable|does this work|is this okay|sound good|ready to (proceed|generate|create)"
)


def already_asks_confirmation(message: str) -> bool:
    """True when the model's own message already asks the user to confirm"""
    return bool(_ALREADY_ASKED.search((message or "").lower()))


def with_confirmation_prompt(message: str) -> str:
    if already_asks_confirmation(message):
        return message
    return f"{message}\n\n{CONFIRMATION_PROMPT}"


def overview_reply(plan: Plan) -> str:
    return f"Here's the plan we put together:\n\n{plan.render_overview()}\n\n{CONFIRMATION_PROMPT}"


def accepted_reply(plan: Plan) -> str:
    return (
        f"Great, \"{plan.title}\" is confirmed with {len(plan.tasks)} tasks. "
        "Creating it now..."
    )


def materialized_reply(activity: Activity, task_count: int, replaced: bool, mode: PlanMode) -> str:
    if replaced:
        return f"**{activity.title}** has been updated! It now has {task_count} tasks."
    if mode == PlanMode.QUICK:
        return f"**Boom!** \"{activity.title}\" created with {task_count} tasks ready to go."
    return (
        f"**Perfect!** \"{activity.title}\" has been created with {task_count} tasks. "
        "You can find it in your activities."
    )
