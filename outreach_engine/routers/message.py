from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from outreach_engine.database import get_db
from outreach_engine.schemas.message import InboundMessageRequest, InboundMessageResponse
from outreach_engine.services.contact_service import normalize_phone
from outreach_engine.services.pipeline_service import InboundPipeline, get_inbound_pipeline

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/inbound", response_model=InboundMessageResponse)
def handle_inbound(
    request: InboundMessageRequest,
    db: Session = Depends(get_db),
    pipeline: InboundPipeline = Depends(get_inbound_pipeline),
):
    """Run one inbound message through the decision pipeline."""
    if not normalize_phone(request.phone):
        raise HTTPException(status_code=422, detail="phone must contain digits")

    try:
        result = pipeline.handle(db, request.phone, request.text, name=request.name)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Inbound handling failed: {exc}") from exc

    gate = result.reply_gate
    return InboundMessageResponse(
        success=True,
        phone=result.phone,
        run_id=result.run_id,
        action=result.action,
        previous_stage=result.previous_stage.value,
        current_stage=result.current_stage.value,
        stage_changed=result.stage_changed,
        intent=result.intent.intent.value if result.intent else None,
        intent_source=result.intent.source if result.intent else None,
        reply=result.reply,
        can_reply=result.can_reply,
        reply_blocked_reason=gate.reason if gate and not gate.allowed else None,
        ccb_regenerated=result.ccb_regenerated,
        do_not=result.do_not,
    )
