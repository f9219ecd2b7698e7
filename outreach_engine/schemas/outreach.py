from typing import Optional

from pydantic import BaseModel, Field


class OutreachPreviewRequest(BaseModel):
    opener_template: str = Field(min_length=1)
    count: int = Field(default=10, ge=1, le=100)
    language: str = "German"


class OutreachPreviewResponse(BaseModel):
    count: int
    variations: list[str]


class OutreachStartRequest(BaseModel):
    phones: list[str] = Field(min_length=1)
    opener_template: str = Field(min_length=1)
    batch_id: Optional[str] = None
    batch_type: str = "outreach"
    language: str = "German"


class OutreachCancelRequest(BaseModel):
    batch_id: str


class CampaignResponse(BaseModel):
    batch_id: str
    batch_type: str
    status: str
    total: int
    sent: int
    targets: list[dict] = []
    results: list[dict] = []
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
