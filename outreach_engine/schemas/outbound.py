from typing import Literal, Optional

from pydantic import BaseModel, Field


class SendDecisionResponse(BaseModel):
    phone: str
    allowed: bool
    reason: Optional[str] = None
    layer: Optional[str] = None


class ValidateRequest(BaseModel):
    text: str
    stage: Optional[str] = None


class ViolationItem(BaseModel):
    rule: str
    detail: Optional[str] = None


class ValidateResponse(BaseModel):
    valid: bool
    has_cta: bool
    length: int
    rules: list[str]
    violations: list[ViolationItem]


class OutboundCheckRequest(BaseModel):
    phone: str = Field(min_length=1)
    text: str
    system_reply: bool = False


class OutboundCheckResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    layer: Optional[str] = None
    validation: Optional[dict] = None
    similarity: Optional[dict] = None
    do_not: list[str] = []


class OutboundConfirmRequest(BaseModel):
    phone: str = Field(min_length=1)
    text: str
    source: Literal["reply", "followup", "outreach", "manual", "system"] = "reply"
    message_id: Optional[str] = None
    run_id: Optional[str] = None


class OutboundConfirmResponse(BaseModel):
    success: bool
    phone: str
    turn_id: int
