"""Operator actions on a single contact."""

from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.logging_config import get_logger
from outreach_engine.services.alert_service import alert_warning
from outreach_engine.services.contact_service import (
    ConsentStatus,
    clear_human_required,
    get_contact,
    pause_bot,
    resume_bot,
    serialize_contact,
    set_dnd,
    set_human_required,
)
from outreach_engine.services.result import ErrorCode, Result

logger = get_logger("control_service")


def takeover_contact(db: Session, phone: str, operator: Optional[str] = None, reason: Optional[str] = None) -> Result[dict]:
    """Human takes the conversation: bot paused and human_required set."""
    contact = get_contact(db, phone)
    if contact is None:
        return Result.failure(f"Contact {phone} not found", code=ErrorCode.NOT_FOUND)
    if contact.consent_status == ConsentStatus.DND.value:
        return Result.failure("Contact is DND", code=ErrorCode.CONTACT_DND)

    pause_bot(db, contact, reason=reason or "manual_takeover")
    set_human_required(db, contact, reason=f"takeover by {operator or 'operator'}")
    logger.info(f"Takeover for {contact.phone}", extra={"context": {"operator": operator}})
    return Result.success(serialize_contact(contact))


def resume_contact(db: Session, phone: str, operator: Optional[str] = None) -> Result[dict]:
    """Hand the conversation back to automation."""
    contact = get_contact(db, phone)
    if contact is None:
        return Result.failure(f"Contact {phone} not found", code=ErrorCode.NOT_FOUND)
    if not resume_bot(db, contact, operator=operator):
        return Result.failure("DND contacts cannot be resumed", code=ErrorCode.CONTACT_DND)
    clear_human_required(db, contact, operator=operator)
    return Result.success(serialize_contact(contact))


def force_dnd(db: Session, phone: str, operator: Optional[str] = None, reason: Optional[str] = None) -> Result[dict]:
    contact = get_contact(db, phone)
    if contact is None:
        return Result.failure(f"Contact {phone} not found", code=ErrorCode.NOT_FOUND)
    if contact.consent_status == ConsentStatus.DND.value:
        return Result.failure("Contact already DND", code=ErrorCode.ALREADY_DND)
    set_dnd(db, contact, reason=reason or f"manual by {operator or 'operator'}")
    alert_warning(f"Contact {contact.phone} set to DND manually", {"operator": operator})
    return Result.success(serialize_contact(contact))
