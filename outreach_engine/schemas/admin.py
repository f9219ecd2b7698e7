from typing import Any, Optional

from pydantic import BaseModel


class SettingsUpdateRequest(BaseModel):
    values: dict[str, Any]


class SettingsResponse(BaseModel):
    settings: dict[str, Any]


class OperatorRequest(BaseModel):
    operator: Optional[str] = None
    reason: Optional[str] = None


class BookingRequest(BaseModel):
    slot: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool
    phone: Optional[str] = None
    message: Optional[str] = None
    data: Optional[dict] = None
