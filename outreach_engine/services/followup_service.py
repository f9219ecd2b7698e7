"""Follow-up scheduler.

The unanswered count is recomputed from conversation history on every sweep,
so an inbound reply resets the nudge sequence without any stored counter.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact, ConversationTurn, QueuedMessage
from outreach_engine.services.contact_service import ConsentStatus
from outreach_engine.services.conversation_service import (
    INCOMING,
    OUTGOING,
    ensure_timezone,
    get_recent_outbound_texts,
    get_recent_turns,
)
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.settings_service import SettingsProvider
from outreach_engine.services.state_machine import TERMINAL_STAGES, parse_stage
from outreach_engine.services.template_service import pick_followup

logger = get_logger("followup_service")

REMINDER = "reminder"


@dataclass
class FollowUpTiming:
    nudge_ceiling: int = 3
    nudge_minutes: int = 8
    reminder_hours: int = 4
    window_hours: int = 48

    @classmethod
    def from_settings(cls, settings_provider: SettingsProvider) -> "FollowUpTiming":
        return cls(
            nudge_ceiling=settings_provider.max_followups_without_reply(),
            nudge_minutes=settings.followup_nudge_minutes,
            reminder_hours=settings.followup_reminder_hours,
            window_hours=settings.followup_window_hours,
        )


@dataclass
class FollowUpCandidate:
    phone: str
    archetype: str
    unanswered: int
    minutes_since_last: int
    last_outbound_at: datetime

    @property
    def nudge_number(self) -> Optional[int]:
        if self.archetype.startswith("nudge_"):
            return int(self.archetype.split("_", 1)[1])
        return None

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "archetype": self.archetype,
            "unanswered": self.unanswered,
            "nudge_number": self.nudge_number,
            "minutes_since_last": self.minutes_since_last,
            "hours_since_last": round(self.minutes_since_last / 60, 2),
        }


def count_unanswered(turns: list[ConversationTurn]) -> int:
    """Length of the trailing run of outgoing turns."""
    unanswered = 0
    for turn in reversed(turns):
        if turn.direction != OUTGOING:
            break
        unanswered += 1
    return unanswered


def classify_followup(
    turns: list[ConversationTurn],
    now: datetime,
    timing: FollowUpTiming,
) -> Optional[tuple[str, int, int]]:
    """Returns (archetype, unanswered, minutes since last outbound) or None."""
    if not turns:
        return None
    last = turns[-1]
    if last.direction == INCOMING:
        return None

    unanswered = count_unanswered(turns)
    minutes = int((now - ensure_timezone(last.created_at)).total_seconds() / 60)
    hours = minutes / 60

    if unanswered <= timing.nudge_ceiling:
        if minutes >= timing.nudge_minutes and hours < timing.reminder_hours:
            return f"nudge_{unanswered}", unanswered, minutes
        return None
    if unanswered == timing.nudge_ceiling + 1:
        if timing.reminder_hours <= hours < timing.window_hours:
            return REMINDER, unanswered, minutes
        return None
    return None


def is_followup_eligible(contact: Contact) -> bool:
    if contact.consent_status == ConsentStatus.DND.value:
        return False
    if contact.bot_paused or contact.human_required:
        return False
    return parse_stage(contact.pipeline_stage) not in TERMINAL_STAGES


def check_contact(
    db: Session,
    contact: Contact,
    timing: FollowUpTiming,
    now: Optional[datetime] = None,
) -> Optional[FollowUpCandidate]:
    if not is_followup_eligible(contact):
        return None
    now = now or datetime.now(timezone.utc)
    turns = get_recent_turns(db, contact.phone, max(settings.followup_history_turns, timing.nudge_ceiling + 2))
    decision = classify_followup(turns, now, timing)
    if decision is None:
        return None
    archetype, unanswered, minutes = decision
    return FollowUpCandidate(
        phone=contact.phone,
        archetype=archetype,
        unanswered=unanswered,
        minutes_since_last=minutes,
        last_outbound_at=ensure_timezone(turns[-1].created_at),
    )


def find_followup_candidates(
    db: Session,
    settings_provider: SettingsProvider,
    now: Optional[datetime] = None,
) -> list[FollowUpCandidate]:
    timing = FollowUpTiming.from_settings(settings_provider)
    contacts = (
        db.query(Contact)
        .filter(
            Contact.consent_status != ConsentStatus.DND.value,
            Contact.bot_paused.is_(False),
            Contact.human_required.is_(False),
            Contact.pipeline_stage.notin_([stage.value for stage in TERMINAL_STAGES]),
        )
        .all()
    )
    candidates = []
    for contact in contacts:
        candidate = check_contact(db, contact, timing, now)
        if candidate:
            candidates.append(candidate)
    return candidates


def _already_queued(db: Session, candidate: FollowUpCandidate) -> bool:
    existing = (
        db.query(QueuedMessage)
        .filter(
            QueuedMessage.phone == candidate.phone,
            QueuedMessage.archetype == candidate.archetype,
            QueuedMessage.created_at >= candidate.last_outbound_at,
        )
        .first()
    )
    return existing is not None


def queue_followups(
    db: Session,
    settings_provider: SettingsProvider,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> dict:
    """Queue one message per eligible contact. Already-queued archetypes are skipped."""
    candidates = find_followup_candidates(db, settings_provider, now)
    queued = []
    for candidate in candidates:
        if _already_queued(db, candidate):
            continue
        contact = db.query(Contact).filter(Contact.phone == candidate.phone).first()
        text = pick_followup(
            candidate.archetype,
            contact,
            get_recent_outbound_texts(db, candidate.phone, settings.similarity_window),
            rng,
        )
        if not text:
            logger.warning(f"No follow-up template for {candidate.archetype}")
            continue

        item = QueuedMessage(
            phone=candidate.phone,
            text=text,
            source="followup",
            archetype=candidate.archetype,
            priority=3,
            status="PENDING",
            attempts=0,
        )
        db.add(item)
        db.flush()
        record_event(
            db,
            candidate.phone,
            EventType.FOLLOWUP_QUEUED,
            {**candidate.to_dict(), "queue_id": item.id},
        )
        queued.append({**candidate.to_dict(), "queue_id": item.id, "text": text})

    if queued:
        logger.info(f"Queued follow-ups: {len(queued)}", extra={"context": {"total": len(candidates)}})
    return {"queued": len(queued), "total": len(candidates), "items": queued}
