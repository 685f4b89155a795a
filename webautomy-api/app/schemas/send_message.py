from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    """Fields stay optional so missing ones surface as a 400, not a 422."""

    model_config = ConfigDict(populate_by_name=True)

    channel_id: Optional[str] = None
    to: Optional[str] = None
    body: Optional[str] = None
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    media_type: Optional[str] = Field(default=None, alias="mediaType")


class SendMessageResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None
    record_id: Optional[UUID] = None
    correlation_id: Optional[str] = None
