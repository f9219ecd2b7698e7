"""Named state transitions for contacts.

Every mutation of a contact's consent, stage, flags or risk goes through one of
these functions and leaves an event behind.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.state_machine import PipelineStage, parse_stage

logger = get_logger("contact_service")

MAX_RISK_SCORE = 100


class ConsentStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    SOFT_OPTIN_SENT = "SOFT_OPTIN_SENT"
    OPTED_IN = "OPTED_IN"
    DND = "DND"


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def get_contact(db: Session, phone: str) -> Optional[Contact]:
    return db.query(Contact).filter(Contact.phone == normalize_phone(phone)).first()


def get_or_create_contact(
    db: Session,
    phone: str,
    name: Optional[str] = None,
    **fields,
) -> Tuple[Contact, bool]:
    """Get existing contact or create a new one in INTRO / UNKNOWN."""
    normalized = normalize_phone(phone)
    if not normalized:
        raise ValueError("phone must contain digits")

    contact = db.query(Contact).filter(Contact.phone == normalized).first()
    if contact:
        if name and not contact.name:
            contact.name = name
        return contact, False

    values = {
        "consent_status": ConsentStatus.UNKNOWN.value,
        "pipeline_stage": PipelineStage.INTRO.value,
        "bot_paused": False,
        "human_required": False,
        "risk_score": 0,
        "ccb_version": 0,
    }
    values.update(fields)
    contact = Contact(phone=normalized, name=name, **values)
    db.add(contact)
    db.flush()
    logger.info(f"Created contact {normalized}")
    return contact, True


def set_stage(
    db: Session,
    contact: Contact,
    stage: PipelineStage,
    reason: str,
    run_id: Optional[str] = None,
) -> bool:
    """Move a contact to ``stage``. Returns True if the stage actually changed."""
    stage = PipelineStage(stage)
    current = parse_stage(contact.pipeline_stage)
    if stage == current:
        return False
    if stage == PipelineStage.DND:
        set_dnd(db, contact, reason=reason, run_id=run_id)
        return True
    if current == PipelineStage.DND or contact.consent_status == ConsentStatus.DND.value:
        logger.warning(f"Refusing stage change {current.value} -> {stage.value} for DND contact {contact.phone}")
        return False

    contact.pipeline_stage = stage.value
    contact.stage_reason = reason
    record_event(
        db,
        contact.phone,
        EventType.STAGE_CHANGED,
        {"from": current.value, "to": stage.value, "reason": reason},
        run_id,
    )
    return True


def set_consent(
    db: Session,
    contact: Contact,
    status: ConsentStatus,
    reason: Optional[str] = None,
    run_id: Optional[str] = None,
) -> bool:
    status = ConsentStatus(status)
    if status == ConsentStatus.DND:
        if contact.consent_status == ConsentStatus.DND.value:
            return False
        set_dnd(db, contact, reason=reason or "consent_dnd", run_id=run_id)
        return True
    if contact.consent_status == status.value:
        return False
    if contact.consent_status == ConsentStatus.DND.value:
        logger.warning(f"Refusing consent change to {status.value} for DND contact {contact.phone}")
        return False

    previous = contact.consent_status
    contact.consent_status = status.value
    record_event(
        db,
        contact.phone,
        EventType.CONSENT_CHANGED,
        {"from": previous, "to": status.value, "reason": reason},
        run_id,
    )
    return True


def set_dnd(db: Session, contact: Contact, reason: str = "opt_out", run_id: Optional[str] = None) -> None:
    """Opt the contact out: consent DND, stage DND, bot paused."""
    previous_consent = contact.consent_status
    previous_stage = contact.pipeline_stage
    contact.consent_status = ConsentStatus.DND.value
    contact.pipeline_stage = PipelineStage.DND.value
    contact.stage_reason = reason
    contact.bot_paused = True
    record_event(
        db,
        contact.phone,
        EventType.DND_SET,
        {"reason": reason, "previous_consent": previous_consent, "previous_stage": previous_stage},
        run_id,
    )
    if previous_stage != PipelineStage.DND.value:
        record_event(
            db,
            contact.phone,
            EventType.STAGE_CHANGED,
            {"from": previous_stage, "to": PipelineStage.DND.value, "reason": reason},
            run_id,
        )


def set_human_required(
    db: Session,
    contact: Contact,
    reason: str,
    run_id: Optional[str] = None,
) -> None:
    contact.human_required = True
    record_event(db, contact.phone, EventType.HUMAN_TAKEOVER, {"reason": reason}, run_id)


def clear_human_required(db: Session, contact: Contact, operator: Optional[str] = None) -> bool:
    if not contact.human_required:
        return False
    contact.human_required = False
    record_event(db, contact.phone, EventType.HUMAN_CLEARED, {"operator": operator})
    return True


def pause_bot(db: Session, contact: Contact, reason: Optional[str] = None) -> None:
    contact.bot_paused = True
    record_event(db, contact.phone, EventType.BOT_PAUSED, {"reason": reason})


def resume_bot(db: Session, contact: Contact, operator: Optional[str] = None) -> bool:
    """Unpause the bot. DND contacts stay paused."""
    if contact.consent_status == ConsentStatus.DND.value:
        return False
    contact.bot_paused = False
    record_event(db, contact.phone, EventType.BOT_RESUMED, {"operator": operator})
    return True


def raise_risk_score(
    db: Session,
    contact: Contact,
    delta: int,
    reason: str,
    run_id: Optional[str] = None,
) -> int:
    """Raise risk by a positive delta, capped at 100. Never lowers it."""
    if delta <= 0:
        return contact.risk_score or 0
    previous = contact.risk_score or 0
    updated = min(MAX_RISK_SCORE, previous + delta)
    if updated != previous:
        contact.risk_score = updated
        record_event(
            db,
            contact.phone,
            EventType.RISK_RAISED,
            {"from": previous, "to": updated, "delta": delta, "reason": reason},
            run_id,
        )
    return updated


def store_ccb(db: Session, contact: Contact, bundle: dict) -> int:
    """Replace the contact's CCB wholesale and bump its version."""
    version = (contact.ccb_version or 0) + 1
    contact.ccb = {**bundle, "version": version}
    contact.ccb_version = version
    return version


def touch_inbound(contact: Contact, at: Optional[datetime] = None) -> None:
    contact.last_inbound_at = at or datetime.now(timezone.utc)


def touch_outbound(contact: Contact, at: Optional[datetime] = None) -> None:
    contact.last_contacted_at = at or datetime.now(timezone.utc)


def list_by_stage(db: Session, stage: PipelineStage) -> list[Contact]:
    return (
        db.query(Contact)
        .filter(Contact.pipeline_stage == PipelineStage(stage).value)
        .order_by(Contact.updated_at.desc())
        .all()
    )


def list_human_required(db: Session) -> list[Contact]:
    return db.query(Contact).filter(Contact.human_required.is_(True)).order_by(Contact.updated_at.desc()).all()


def serialize_contact(contact: Contact) -> dict:
    return {
        "phone": contact.phone,
        "name": contact.name,
        "company": contact.company,
        "consent_status": contact.consent_status,
        "pipeline_stage": contact.pipeline_stage,
        "stage_reason": contact.stage_reason,
        "bot_paused": bool(contact.bot_paused),
        "human_required": bool(contact.human_required),
        "risk_score": contact.risk_score or 0,
        "ccb_version": contact.ccb_version or 0,
        "last_contacted_at": contact.last_contacted_at.isoformat() if contact.last_contacted_at else None,
        "last_inbound_at": contact.last_inbound_at.isoformat() if contact.last_inbound_at else None,
    }
