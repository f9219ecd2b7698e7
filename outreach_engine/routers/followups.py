from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from outreach_engine.database import get_db
from outreach_engine.schemas.followup import DispatchResponse, FollowUpListResponse, QueueFollowUpsResponse
from outreach_engine.services.circuit_breaker import CircuitBreaker, get_circuit_breaker
from outreach_engine.services.dispatch_service import dispatch_pending, list_queue, serialize_queued
from outreach_engine.services.followup_service import find_followup_candidates, queue_followups
from outreach_engine.services.settings_service import SettingsProvider, get_settings_provider
from outreach_engine.services.transport import Transport, get_transport

router = APIRouter(prefix="/followups", tags=["followups"])


@router.get("", response_model=FollowUpListResponse)
def get_followups(
    db: Session = Depends(get_db),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    """Contacts due for a nudge or reminder right now."""
    candidates = find_followup_candidates(db, settings_provider)
    return FollowUpListResponse(
        count=len(candidates),
        candidates=[c.to_dict() for c in candidates],
    )


@router.post("/queue", response_model=QueueFollowUpsResponse)
def queue(
    db: Session = Depends(get_db),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    results = queue_followups(db, settings_provider)
    db.commit()
    return QueueFollowUpsResponse(**results)


@router.get("/queue")
def get_queue(status: Optional[str] = None, limit: int = 100, db: Session = Depends(get_db)):
    items = list_queue(db, status=status, limit=limit)
    return {"count": len(items), "items": [serialize_queued(item) for item in items]}


@router.post("/dispatch", response_model=DispatchResponse)
def dispatch(
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
    transport: Optional[Transport] = Depends(get_transport),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    if transport is None:
        raise HTTPException(status_code=503, detail="TRANSPORT_URL not configured")
    results = dispatch_pending(db, transport, breaker, settings_provider, limit=limit)
    return DispatchResponse(**results)
