import asyncio
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from outreach_engine.database import get_session_factory
from outreach_engine.schemas.outreach import (
    CampaignResponse,
    OutreachCancelRequest,
    OutreachPreviewRequest,
    OutreachPreviewResponse,
    OutreachStartRequest,
)
from outreach_engine.services.circuit_breaker import CircuitBreaker, get_circuit_breaker
from outreach_engine.services.outreach_service import (
    Campaign,
    CampaignRunner,
    cancel_campaign,
    generate_opener_variations,
    get_campaign,
    list_campaigns,
    prepare_campaign,
    start_campaign,
)
from outreach_engine.services.settings_service import SettingsProvider, get_settings_provider
from outreach_engine.services.transport import Transport, get_transport

router = APIRouter(prefix="/outreach", tags=["outreach"])


def _prepare(session_factory: Callable[[], Session], request: OutreachStartRequest) -> Campaign:
    db = session_factory()
    try:
        campaign = prepare_campaign(
            db,
            request.phones,
            request.opener_template,
            batch_id=request.batch_id,
            batch_type=request.batch_type,
            language=request.language,
        )
        db.commit()
        return campaign
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/preview", response_model=OutreachPreviewResponse)
def preview(request: OutreachPreviewRequest):
    """Opener variations without touching any contact."""
    variations = generate_opener_variations(request.opener_template, request.count, request.language)
    return OutreachPreviewResponse(count=len(variations), variations=variations)


@router.post("/start", response_model=CampaignResponse)
async def start(
    request: OutreachStartRequest,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    transport: Optional[Transport] = Depends(get_transport),
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
    settings_provider: SettingsProvider = Depends(get_settings_provider),
):
    if transport is None:
        raise HTTPException(status_code=503, detail="TRANSPORT_URL not configured")
    if not breaker.is_global_enabled():
        raise HTTPException(status_code=409, detail="Global send disabled")
    if request.batch_id and get_campaign(request.batch_id):
        raise HTTPException(status_code=409, detail=f"Campaign {request.batch_id} already exists")

    campaign = await asyncio.to_thread(_prepare, session_factory, request)
    runner = CampaignRunner(session_factory, transport, breaker, settings_provider)
    start_campaign(runner, campaign)
    return CampaignResponse(**campaign.to_dict())


@router.post("/cancel", response_model=CampaignResponse)
def cancel(request: OutreachCancelRequest):
    if not cancel_campaign(request.batch_id):
        raise HTTPException(status_code=404, detail=f"No active campaign {request.batch_id}")
    return CampaignResponse(**get_campaign(request.batch_id).to_dict())


@router.get("/campaigns")
def campaigns():
    return {"campaigns": [c.to_dict() for c in list_campaigns()]}


@router.get("/campaigns/{batch_id}", response_model=CampaignResponse)
def campaign_status(batch_id: str):
    campaign = get_campaign(batch_id)
    if campaign is None:
        raise HTTPException(status_code=404, detail=f"Campaign {batch_id} not found")
    return CampaignResponse(**campaign.to_dict())
