from typing import Optional

from pydantic import BaseModel


class FollowUpItem(BaseModel):
    phone: str
    archetype: str
    unanswered: int
    nudge_number: Optional[int] = None
    minutes_since_last: int
    hours_since_last: float


class FollowUpListResponse(BaseModel):
    count: int
    candidates: list[FollowUpItem]


class QueueFollowUpsResponse(BaseModel):
    queued: int
    total: int
    items: list[dict]


class DispatchResponse(BaseModel):
    sent: int
    blocked: int
    failed: int
    retrying: int
    stopped: bool
