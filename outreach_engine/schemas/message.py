from typing import Optional

from pydantic import BaseModel, Field


class InboundMessageRequest(BaseModel):
    phone: str = Field(min_length=1)
    text: str
    name: Optional[str] = None


class InboundMessageResponse(BaseModel):
    success: bool
    phone: str
    run_id: str
    action: str
    previous_stage: str
    current_stage: str
    stage_changed: bool = False
    intent: Optional[str] = None
    intent_source: Optional[str] = None
    reply: Optional[str] = None
    can_reply: bool = False
    reply_blocked_reason: Optional[str] = None
    ccb_regenerated: bool = False
    do_not: list[str] = []
