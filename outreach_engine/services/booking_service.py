from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.services.contact_service import ConsentStatus, set_stage
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.result import ErrorCode, Result
from outreach_engine.services.state_machine import PipelineStage
from outreach_engine.services.template_service import booking_text

logger = get_logger("booking_service")

BOOKED_REASON = "Termin gebucht"


def booking_offer(contact: Optional[Contact]) -> dict:
    return {
        "message": booking_text("offer", contact, link=settings.booking_link),
        "link": settings.booking_link,
    }


def confirm_booking(db: Session, contact: Contact, slot: Optional[str] = None) -> Result[dict]:
    """Mark the appointment as booked and close the contact as WON."""
    if contact.consent_status == ConsentStatus.DND.value:
        return Result.failure("Contact is DND", code=ErrorCode.CONTACT_DND)

    set_stage(db, contact, PipelineStage.WON, BOOKED_REASON)
    record_event(db, contact.phone, EventType.APPOINTMENT_BOOKED, {"slot": slot})
    logger.info(f"Appointment booked for {contact.phone}", extra={"context": {"slot": slot}})
    return Result.success(
        {
            "confirm_message": booking_text("confirm", contact),
            "reminder_message": booking_text("reminder", contact),
        }
    )
