import json
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from outreach_engine.logging_config import get_logger
from outreach_engine.models import Event

logger = get_logger("event_service")

SYSTEM_IDENTITY = "SYSTEM"


class EventType(str, Enum):
    INBOUND_MESSAGE = "INBOUND_MESSAGE"
    OUTBOUND_MESSAGE = "OUTBOUND_MESSAGE"
    INTENT_CLASSIFIED = "INTENT_CLASSIFIED"
    STAGE_CHANGED = "STAGE_CHANGED"
    CONSENT_CHANGED = "CONSENT_CHANGED"
    CCB_GENERATED = "CCB_GENERATED"
    CCB_FAILED = "CCB_FAILED"
    ESCALATION_TRIGGERED = "ESCALATION_TRIGGERED"
    SEND_BLOCKED = "SEND_BLOCKED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SIMILARITY_FLAGGED = "SIMILARITY_FLAGGED"
    CIRCUIT_BREAKER_TRIPPED = "CIRCUIT_BREAKER_TRIPPED"
    EMERGENCY_STOP = "EMERGENCY_STOP"
    SEND_RESUMED = "SEND_RESUMED"
    DND_SET = "DND_SET"
    HUMAN_TAKEOVER = "HUMAN_TAKEOVER"
    HUMAN_CLEARED = "HUMAN_CLEARED"
    BOT_PAUSED = "BOT_PAUSED"
    BOT_RESUMED = "BOT_RESUMED"
    RISK_RAISED = "RISK_RAISED"
    FOLLOWUP_QUEUED = "FOLLOWUP_QUEUED"
    OUTREACH_SENT = "OUTREACH_SENT"
    OUTREACH_ERROR = "OUTREACH_ERROR"
    APPOINTMENT_BOOKED = "APPOINTMENT_BOOKED"
    HANDLING_FAILED = "HANDLING_FAILED"


def _json_safe(payload: Optional[dict]) -> dict:
    if not payload:
        return {}
    return json.loads(json.dumps(payload, default=str, ensure_ascii=False))


def record_event(
    db: Session,
    phone: str,
    event_type: EventType,
    payload: Optional[dict] = None,
    run_id: Optional[str] = None,
) -> Event:
    """Append an event to the current unit of work."""
    event = Event(
        phone=phone,
        event_type=EventType(event_type).value,
        payload=_json_safe(payload),
        run_id=run_id,
    )
    db.add(event)
    db.flush()
    return event


def record_detached_event(
    session_factory: Callable[[], Session],
    phone: str,
    event_type: EventType,
    payload: Optional[dict] = None,
    run_id: Optional[str] = None,
) -> bool:
    """Append an event on its own session so it survives a caller rollback."""
    db = session_factory()
    try:
        record_event(db, phone, event_type, payload, run_id)
        db.commit()
        return True
    except Exception as exc:
        db.rollback()
        logger.error(f"Failed to record {EventType(event_type).value} event for {phone}: {exc}")
        return False
    finally:
        db.close()


def list_events(
    db: Session,
    phone: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> list[Event]:
    query = db.query(Event)
    if phone:
        query = query.filter(Event.phone == phone)
    if event_type:
        query = query.filter(Event.event_type == event_type)
    return query.order_by(Event.created_at.desc()).limit(limit).all()


def count_events_by_type(db: Session, since: Optional[datetime] = None) -> dict[str, int]:
    query = db.query(Event.event_type, func.count(Event.id))
    if since is not None:
        query = query.filter(Event.created_at >= since)
    return {event_type: count for event_type, count in query.group_by(Event.event_type).all()}


def serialize_event(event: Event) -> dict:
    return {
        "id": str(event.id),
        "phone": event.phone,
        "event_type": event.event_type,
        "payload": event.payload or {},
        "run_id": event.run_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
