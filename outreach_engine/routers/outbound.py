from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from outreach_engine.database import get_db
from outreach_engine.schemas.outbound import (
    OutboundCheckRequest,
    OutboundCheckResponse,
    OutboundConfirmRequest,
    OutboundConfirmResponse,
    SendDecisionResponse,
    ValidateRequest,
    ValidateResponse,
)
from outreach_engine.services.circuit_breaker import CircuitBreaker, get_circuit_breaker
from outreach_engine.services.contact_service import normalize_phone
from outreach_engine.services.outbound_service import can_send, confirm_outbound, evaluate_outbound
from outreach_engine.services.settings_service import SettingsProvider, get_settings_provider
from outreach_engine.services.state_machine import parse_stage
from outreach_engine.services.validator_service import validate_message

router = APIRouter(prefix="/outbound", tags=["outbound"])


def _require_phone(phone: str) -> str:
    normalized = normalize_phone(phone)
    if not normalized:
        raise HTTPException(status_code=422, detail="phone must contain digits")
    return normalized


@router.get("/can-send/{phone}", response_model=SendDecisionResponse)
def get_can_send(
    phone: str,
    db: Session = Depends(get_db),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    """Layers 1 and 2 only, for transports that run their own content checks."""
    phone = _require_phone(phone)
    decision = can_send(db, phone, breaker)
    return SendDecisionResponse(phone=phone, **decision.to_dict())


@router.post("/validate", response_model=ValidateResponse)
def validate(
    request: ValidateRequest,
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    result = validate_message(request.text, parse_stage(request.stage), settings_provider)
    return ValidateResponse(
        valid=result.valid,
        has_cta=result.has_cta,
        length=result.length,
        rules=result.rules,
        violations=[v.to_dict() for v in result.violations],
    )


@router.post("/check", response_model=OutboundCheckResponse)
def check(
    request: OutboundCheckRequest,
    db: Session = Depends(get_db),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    """Full pre-send gate. Blocks are recorded as events."""
    phone = _require_phone(request.phone)
    decision = evaluate_outbound(
        db,
        phone,
        request.text,
        breaker,
        settings_provider,
        system_reply=request.system_reply,
    )
    db.commit()
    return OutboundCheckResponse(**decision.to_dict())


@router.post("/confirm", response_model=OutboundConfirmResponse)
def confirm(
    request: OutboundConfirmRequest,
    db: Session = Depends(get_db),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
):
    """Transport reports a delivered message."""
    phone = _require_phone(request.phone)
    turn = confirm_outbound(
        db,
        phone,
        request.text,
        run_id=request.run_id,
        source=request.source,
        message_id=request.message_id,
    )
    db.commit()
    breaker.record_success()
    return OutboundConfirmResponse(success=True, phone=phone, turn_id=turn.id)
