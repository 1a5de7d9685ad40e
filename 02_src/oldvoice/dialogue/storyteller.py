"""The storyteller setup dialogue: who to call, what to ask, and when."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from ..models import CANCELLED, COMPLETED
from .definition import DialogueDefinition, StateSpec, goto, non_blank, static
from .schedule import (
    describe_schedule,
    is_custom_choice,
    is_schedule_choice,
    parse_clock_time,
    resolve_schedule,
    zone,
)


class State(str, Enum):
    """Persisted state names."""

    INITIAL = "initial"
    COLLECTING_PHONE = "collecting_phone"
    COLLECTING_RELATIONSHIP = "collecting_relationship"
    COLLECTING_PERSONALITY = "collecting_personality"
    COLLECTING_BACKGROUND = "collecting_background"
    COLLECTING_QUESTIONS = "collecting_questions"
    COLLECTING_MORE_QUESTIONS = "collecting_more_questions"
    COLLECTING_AVOID_TOPICS = "collecting_avoid_topics"
    COLLECTING_AI_STYLE = "collecting_ai_style"
    COLLECTING_SCHEDULE = "collecting_schedule"
    COLLECTING_CUSTOM_TIME = "collecting_custom_time"
    CONFIRMING = "confirming"
    COMPLETED = COMPLETED
    CANCELLED = CANCELLED


QUESTIONS_SENTINEL = "done"
NO_TOPICS = "none"
ENOUGH_QUESTIONS = 5

AI_STYLES = {
    "1": "warm",
    "2": "professional",
    "3": "curious",
    "warm": "warm",
    "professional": "professional",
    "curious": "curious",
}

CONFIRM_YES = "yes"
CONFIRM_CHOICES = frozenset({"yes", "no", "cancel"})

INITIAL_PROMPT = (
    "Hi! I'm here to help you record a special conversation with your loved one. "
    "Let's start by setting up the details.\n\n"
    "What's the name of the person you'd like to have a conversation with?"
)
MORE_QUESTIONS_PROMPT = "Any other questions? (Reply 'done' if you're finished)"
ENOUGH_QUESTIONS_PROMPT = (
    "Great questions! That's plenty for one call. Reply 'done' to continue."
)
AI_STYLE_PROMPT = (
    "How should the AI interviewer be? Choose one:\n"
    "1) Warm & friendly\n"
    "2) Professional journalist\n"
    "3) Curious grandchild"
)
SCHEDULE_PROMPT = (
    "When should I make the call?\n"
    "1) Now\n"
    "2) In 30 minutes\n"
    "3) In 1 hour\n"
    "4) Custom time"
)


def _keyword(text: str) -> str:
    return text.strip().lower()


def _name(data: dict) -> str:
    return data.get("storyteller", {}).get("name") or "them"


def normalize_phone(text: str) -> str:
    """Collapse a phone string to +<countrycode><digits>; bare 10 digits are US."""
    digits = re.sub(r"\D", "", text)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def _valid_phone(text: str, data: dict) -> bool:
    return len(re.sub(r"\D", "", text)) >= 10


def _accumulate_question(text: str, data: dict) -> list[str]:
    questions = list(data.get("questions", []))
    if _keyword(text) == QUESTIONS_SENTINEL:
        return questions
    return questions + [text.strip()]


def _more_questions_prompt(data: dict) -> str:
    if len(data.get("questions", [])) >= ENOUGH_QUESTIONS:
        return ENOUGH_QUESTIONS_PROMPT
    return MORE_QUESTIONS_PROMPT


def _avoid_topics(text: str, data: dict) -> list[str]:
    if _keyword(text) == NO_TOPICS:
        return []
    return [text.strip()]


def _confirmation(tz) -> Callable[[dict], str]:
    def render(data: dict) -> str:
        storyteller = data.get("storyteller", {})
        return (
            "Perfect! Here's what I have:\n\n"
            f"📞 Calling: {storyteller.get('name')} ({storyteller.get('phone')})\n"
            f"👤 Relationship: {storyteller.get('relationship')}\n"
            f"🎯 Questions: {len(data.get('questions', []))} topics\n"
            f"🤖 Style: {data.get('ai_style')} interviewer\n"
            f"⏰ When: {describe_schedule(data.get('scheduled_time'), tz)}\n\n"
            "Reply 'yes' to confirm or 'cancel' to start over."
        )

    return render


def initial_data() -> dict:
    return {"storyteller": {}, "questions": [], "avoid_topics": []}


def build_storyteller_dialogue(
    clock: Callable[[], datetime] | None = None,
    timezone_name: str = "UTC",
) -> DialogueDefinition:
    """Build the setup dialogue.

    ``clock`` resolves relative schedules ("in 30 minutes") at transform
    time; ``timezone_name`` is the zone custom clock times are read in.
    """
    now = clock or (lambda: datetime.now(timezone.utc))
    tz = zone(timezone_name)

    def schedule(text: str, data: dict) -> str | None:
        return resolve_schedule(text, now(), tz)

    states = [
        StateSpec(
            name=State.INITIAL.value,
            prompt=static(INITIAL_PROMPT),
            next=goto(State.COLLECTING_PHONE.value),
            target="storyteller.name",
            validator=non_blank,
            error_text="Please provide the person's name.",
        ),
        StateSpec(
            name=State.COLLECTING_PHONE.value,
            prompt=lambda data: f"Great! What's the best phone number to reach {_name(data)}?",
            next=goto(State.COLLECTING_RELATIONSHIP.value),
            target="storyteller.phone",
            validator=_valid_phone,
            transformer=lambda text, data: normalize_phone(text),
            error_text="Please provide a valid phone number.",
        ),
        StateSpec(
            name=State.COLLECTING_RELATIONSHIP.value,
            prompt=lambda data: (
                f"What's your relationship to {_name(data)}? "
                "(e.g., grandmother, father, uncle)"
            ),
            next=goto(State.COLLECTING_PERSONALITY.value),
            target="storyteller.relationship",
            validator=non_blank,
        ),
        StateSpec(
            name=State.COLLECTING_PERSONALITY.value,
            prompt=lambda data: (
                f"How would you describe {_name(data)}'s personality? "
                "This helps the AI adapt its conversation style. "
                '(e.g., "formal but warms up when talking about gardening")'
            ),
            next=goto(State.COLLECTING_BACKGROUND.value),
            target="storyteller.personality",
            validator=non_blank,
        ),
        StateSpec(
            name=State.COLLECTING_BACKGROUND.value,
            prompt=lambda data: (
                f"What's some background about {_name(data)} that might be helpful? "
                '(e.g., "Polish immigrant who came to America in 1960s")'
            ),
            next=goto(State.COLLECTING_QUESTIONS.value),
            target="storyteller.background",
            validator=non_blank,
        ),
        StateSpec(
            name=State.COLLECTING_QUESTIONS.value,
            prompt=static(
                "What would you like to ask about? Share 1-3 specific topics or questions."
            ),
            next=goto(State.COLLECTING_MORE_QUESTIONS.value),
            target="questions",
            validator=non_blank,
            transformer=lambda text, data: [text.strip()],
        ),
        StateSpec(
            name=State.COLLECTING_MORE_QUESTIONS.value,
            prompt=_more_questions_prompt,
            next=lambda text: (
                State.COLLECTING_AVOID_TOPICS.value
                if _keyword(text) == QUESTIONS_SENTINEL
                else State.COLLECTING_MORE_QUESTIONS.value
            ),
            target="questions",
            validator=non_blank,
            transformer=_accumulate_question,
        ),
        StateSpec(
            name=State.COLLECTING_AVOID_TOPICS.value,
            prompt=static(
                "Are there any sensitive topics to avoid? (Reply 'none' if not)"
            ),
            next=goto(State.COLLECTING_AI_STYLE.value),
            target="avoid_topics",
            validator=non_blank,
            transformer=_avoid_topics,
        ),
        StateSpec(
            name=State.COLLECTING_AI_STYLE.value,
            prompt=static(AI_STYLE_PROMPT),
            next=goto(State.COLLECTING_SCHEDULE.value),
            target="ai_style",
            validator=lambda text, data: _keyword(text) in AI_STYLES,
            transformer=lambda text, data: AI_STYLES[_keyword(text)],
            error_text="Please choose 1, 2, or 3",
        ),
        StateSpec(
            name=State.COLLECTING_SCHEDULE.value,
            prompt=static(SCHEDULE_PROMPT),
            next=lambda text: (
                State.COLLECTING_CUSTOM_TIME.value
                if is_custom_choice(text)
                else State.CONFIRMING.value
            ),
            target="scheduled_time",
            validator=lambda text, data: is_schedule_choice(text),
            transformer=schedule,
            error_text="Please choose 1, 2, 3 or 4, or send a time like 3:30pm.",
        ),
        StateSpec(
            name=State.COLLECTING_CUSTOM_TIME.value,
            prompt=static("What time should I call? (e.g., 3:30pm or 15:30)"),
            next=goto(State.CONFIRMING.value),
            target="scheduled_time",
            validator=lambda text, data: parse_clock_time(text) is not None,
            transformer=schedule,
            error_text="Please send a time like 3:30pm or 15:30.",
        ),
        StateSpec(
            name=State.CONFIRMING.value,
            prompt=_confirmation(tz),
            next=lambda text: (
                State.COMPLETED.value
                if _keyword(text) == CONFIRM_YES
                else State.CANCELLED.value
            ),
            validator=lambda text, data: _keyword(text) in CONFIRM_CHOICES,
            error_text="Please reply 'yes' to confirm or 'cancel' to start over.",
        ),
    ]

    return DialogueDefinition(
        states,
        initial_state=State.INITIAL.value,
        initial_data=initial_data,
    )
