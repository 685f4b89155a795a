from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class OnboardRequest(BaseModel):
    code: Optional[str] = None
    phone_number_id: Optional[str] = None
    waba_id: Optional[str] = None


class OnboardResponse(BaseModel):
    success: bool
    channel_id: UUID
    phone_number_id: str
    status: str
