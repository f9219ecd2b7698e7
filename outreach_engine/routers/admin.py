"""Admin API endpoints: runtime settings, kill switch, operator actions, reporting."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.database import get_db
from outreach_engine.models import Contact
from outreach_engine.schemas.admin import (
    ActionResponse,
    BookingRequest,
    OperatorRequest,
    SettingsResponse,
    SettingsUpdateRequest,
)
from outreach_engine.services.booking_service import booking_offer, confirm_booking
from outreach_engine.services.circuit_breaker import CircuitBreaker, get_circuit_breaker
from outreach_engine.services.contact_service import (
    get_contact,
    list_by_stage,
    list_human_required,
    normalize_phone,
    serialize_contact,
)
from outreach_engine.services.control_service import force_dnd, resume_contact, takeover_contact
from outreach_engine.services.event_service import count_events_by_type, list_events, serialize_event
from outreach_engine.services.result import Result
from outreach_engine.services.settings_service import (
    GLOBAL_SEND_ENABLED,
    SettingsProvider,
    coerce_setting,
    get_settings_provider,
)
from outreach_engine.services.state_machine import PipelineStage, parse_stage

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _action_response(result: Result[dict], phone: str, db: Session, message: str) -> ActionResponse:
    if not result.ok:
        db.rollback()
        raise HTTPException(status_code=result.http_status, detail=result.error)
    db.commit()
    return ActionResponse(success=True, phone=phone, message=message, data=result.value)


# === SETTINGS ===


@router.get("/settings", response_model=SettingsResponse)
def get_runtime_settings(
    x_admin_token: Optional[str] = Header(None),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    _require_admin_token(x_admin_token)
    return SettingsResponse(settings=settings_provider.reload())


@router.put("/settings", response_model=SettingsResponse)
def update_runtime_settings(
    request: SettingsUpdateRequest,
    x_admin_token: Optional[str] = Header(None),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    """Write-through update. The global toggle goes through the kill switch."""
    _require_admin_token(x_admin_token)
    for key, value in request.values.items():
        if key == GLOBAL_SEND_ENABLED:
            continue
        try:
            settings_provider.set(key, value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    if GLOBAL_SEND_ENABLED in request.values:
        requested = coerce_setting(GLOBAL_SEND_ENABLED, request.values[GLOBAL_SEND_ENABLED])
        if not requested:
            breaker.emergency_stop(operator="admin_settings")
        elif not breaker.is_global_enabled():
            breaker.resume(operator="admin_settings")

    return SettingsResponse(settings=settings_provider.snapshot())


# === KILL SWITCH ===


@router.post("/kill-switch/stop", response_model=ActionResponse)
def emergency_stop(
    request: Optional[OperatorRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    _require_admin_token(x_admin_token)
    breaker.emergency_stop(operator=request.operator if request else None)
    return ActionResponse(success=True, message="Global send disabled")


@router.post("/kill-switch/resume", response_model=ActionResponse)
def resume_sending(
    request: Optional[OperatorRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    _require_admin_token(x_admin_token)
    breaker.resume(operator=request.operator if request else None)
    return ActionResponse(success=True, message="Global send enabled", data={"error_count": breaker.error_count})


# === CONTACTS ===


@router.get("/human-required")
def human_required(x_admin_token: Optional[str] = Header(None), db: Session = Depends(get_db)):
    _require_admin_token(x_admin_token)
    contacts = list_human_required(db)
    return {"count": len(contacts), "contacts": [serialize_contact(c) for c in contacts]}


@router.post("/contacts/{phone}/takeover", response_model=ActionResponse)
def takeover(
    phone: str,
    request: Optional[OperatorRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    phone = normalize_phone(phone)
    result = takeover_contact(
        db,
        phone,
        operator=request.operator if request else None,
        reason=request.reason if request else None,
    )
    return _action_response(result, phone, db, "Bot paused, human required")


@router.post("/contacts/{phone}/resume", response_model=ActionResponse)
def resume(
    phone: str,
    request: Optional[OperatorRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    phone = normalize_phone(phone)
    result = resume_contact(db, phone, operator=request.operator if request else None)
    return _action_response(result, phone, db, "Bot resumed")


@router.post("/contacts/{phone}/dnd", response_model=ActionResponse)
def set_contact_dnd(
    phone: str,
    request: Optional[OperatorRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    phone = normalize_phone(phone)
    result = force_dnd(
        db,
        phone,
        operator=request.operator if request else None,
        reason=request.reason if request else None,
    )
    return _action_response(result, phone, db, "Contact set to DND")


@router.get("/contacts/{phone}/booking-offer", response_model=ActionResponse)
def get_booking_offer(phone: str, x_admin_token: Optional[str] = Header(None), db: Session = Depends(get_db)):
    _require_admin_token(x_admin_token)
    contact = get_contact(db, phone)
    return ActionResponse(success=True, phone=normalize_phone(phone), data=booking_offer(contact))


@router.post("/contacts/{phone}/book", response_model=ActionResponse)
def book(
    phone: str,
    request: Optional[BookingRequest] = None,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    contact = get_contact(db, phone)
    if contact is None:
        raise HTTPException(status_code=404, detail=f"Contact {phone} not found")
    result = confirm_booking(db, contact, slot=request.slot if request else None)
    return _action_response(result, contact.phone, db, "Appointment booked")


@router.get("/contacts/{phone}/ccb")
def get_ccb(phone: str, x_admin_token: Optional[str] = Header(None), db: Session = Depends(get_db)):
    _require_admin_token(x_admin_token)
    contact = get_contact(db, phone)
    if contact is None:
        raise HTTPException(status_code=404, detail=f"Contact {phone} not found")
    return {"phone": contact.phone, "version": contact.ccb_version or 0, "ccb": contact.ccb}


# === REPORTING ===


@router.get("/pipeline")
def pipeline_board(
    stage: Optional[str] = None,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Contacts grouped by stage, or one stage when given."""
    _require_admin_token(x_admin_token)
    if stage:
        parsed = parse_stage(stage, default=None)
        if parsed is None:
            raise HTTPException(status_code=400, detail=f"Unknown stage: {stage}")
        stages = [parsed]
    else:
        stages = list(PipelineStage)

    board = {}
    for item in stages:
        contacts = list_by_stage(db, item)
        board[item.value] = {"count": len(contacts), "contacts": [serialize_contact(c) for c in contacts]}
    return {"stages": board}


@router.get("/events")
def events(
    phone: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    rows = list_events(
        db,
        phone=normalize_phone(phone) if phone else None,
        event_type=event_type.upper() if event_type else None,
        limit=max(1, min(limit, 1000)),
    )
    return {"count": len(rows), "events": [serialize_event(e) for e in rows]}


@router.get("/kpis")
def kpis(
    hours: int = 24,
    x_admin_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    _require_admin_token(x_admin_token)
    since = datetime.now(timezone.utc) - timedelta(hours=max(1, hours))

    by_stage = dict(db.query(Contact.pipeline_stage, func.count(Contact.phone)).group_by(Contact.pipeline_stage).all())
    by_consent = dict(
        db.query(Contact.consent_status, func.count(Contact.phone)).group_by(Contact.consent_status).all()
    )
    contacted = db.query(Contact).filter(Contact.last_contacted_at.isnot(None)).count()
    replied = (
        db.query(Contact)
        .filter(Contact.last_contacted_at.isnot(None), Contact.last_inbound_at.isnot(None))
        .count()
    )
    return {
        "window_hours": max(1, hours),
        "contacts_total": sum(by_stage.values()),
        "by_stage": by_stage,
        "by_consent": by_consent,
        "human_required": db.query(Contact).filter(Contact.human_required.is_(True)).count(),
        "contacted": contacted,
        "replied": replied,
        "reply_rate": round(replied / contacted, 3) if contacted else 0.0,
        "events": count_events_by_type(db, since=since),
        "global_send_enabled": breaker.is_global_enabled(),
        "consecutive_errors": breaker.error_count,
    }
