from enum import Enum
from typing import Optional


class PipelineStage(str, Enum):
    INTRO = "INTRO"
    QUALIFYING = "QUALIFYING"
    VALUE_DELIVERY = "VALUE_DELIVERY"
    BOOKING = "BOOKING"
    FOLLOW_UP = "FOLLOW_UP"
    WON = "WON"
    LOST = "LOST"
    DND = "DND"


class Intent(str, Enum):
    GREETING = "greeting"
    QUESTION = "question"
    INTEREST = "interest"
    NOT_INTERESTED = "not_interested"
    OBJECTION = "objection"
    CONFIRMATION = "confirmation"
    THANKS = "thanks"
    APPOINTMENT = "appointment"
    PRICING = "pricing"
    OTHER = "other"


# Absorbing stages: no intent moves a contact out of them.
ABSORBING_STAGES = {PipelineStage.WON, PipelineStage.DND}

# Stages the follow-up sweep never touches.
TERMINAL_STAGES = {PipelineStage.WON, PipelineStage.LOST, PipelineStage.DND}

# Links are held back while the contact is still in one of these.
EARLY_STAGES = {PipelineStage.INTRO, PipelineStage.QUALIFYING}

# Pairs not listed here are self-loops.
TRANSITIONS: dict[PipelineStage, dict[Intent, PipelineStage]] = {
    PipelineStage.INTRO: {
        Intent.INTEREST: PipelineStage.QUALIFYING,
        Intent.QUESTION: PipelineStage.QUALIFYING,
        Intent.PRICING: PipelineStage.QUALIFYING,
        Intent.GREETING: PipelineStage.QUALIFYING,
        Intent.CONFIRMATION: PipelineStage.QUALIFYING,
        Intent.NOT_INTERESTED: PipelineStage.LOST,
    },
    PipelineStage.QUALIFYING: {
        Intent.APPOINTMENT: PipelineStage.BOOKING,
        Intent.NOT_INTERESTED: PipelineStage.LOST,
        Intent.INTEREST: PipelineStage.VALUE_DELIVERY,
        Intent.CONFIRMATION: PipelineStage.VALUE_DELIVERY,
        Intent.QUESTION: PipelineStage.VALUE_DELIVERY,
        Intent.THANKS: PipelineStage.VALUE_DELIVERY,
    },
    PipelineStage.VALUE_DELIVERY: {
        Intent.APPOINTMENT: PipelineStage.BOOKING,
        Intent.CONFIRMATION: PipelineStage.BOOKING,
        Intent.INTEREST: PipelineStage.BOOKING,
        Intent.THANKS: PipelineStage.BOOKING,
        Intent.NOT_INTERESTED: PipelineStage.LOST,
    },
    PipelineStage.BOOKING: {
        Intent.CONFIRMATION: PipelineStage.WON,
        Intent.NOT_INTERESTED: PipelineStage.LOST,
    },
    PipelineStage.FOLLOW_UP: {
        Intent.INTEREST: PipelineStage.QUALIFYING,
        Intent.QUESTION: PipelineStage.QUALIFYING,
        Intent.CONFIRMATION: PipelineStage.QUALIFYING,
        Intent.NOT_INTERESTED: PipelineStage.LOST,
    },
    PipelineStage.LOST: {
        Intent.INTEREST: PipelineStage.QUALIFYING,
    },
    PipelineStage.WON: {},
    PipelineStage.DND: {},
}


def parse_stage(
    value: Optional[str],
    default: Optional[PipelineStage] = PipelineStage.INTRO,
) -> Optional[PipelineStage]:
    """Map a stored stage string to the enum, falling back to ``default``."""
    if not value:
        return default
    try:
        return PipelineStage(str(value).strip().upper())
    except ValueError:
        return default


def parse_intent(value: Optional[str]) -> Intent:
    """Map a classifier label to the enum; unknown labels become OTHER."""
    if not value:
        return Intent.OTHER
    try:
        return Intent(str(value).strip().lower())
    except ValueError:
        return Intent.OTHER


def next_stage(current: PipelineStage, intent: Intent) -> PipelineStage:
    """Pure transition function, total over every (stage, intent) pair."""
    return TRANSITIONS.get(current, {}).get(intent, current)


def is_terminal(stage: PipelineStage) -> bool:
    return stage in TERMINAL_STAGES
