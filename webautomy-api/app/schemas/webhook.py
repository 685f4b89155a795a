from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WhatsAppText(_Envelope):
    body: Optional[str] = None


class WhatsAppInboundMessage(_Envelope):
    id: Optional[str] = None
    from_number: Optional[str] = Field(default=None, alias="from")
    timestamp: Optional[str] = None
    type: Optional[str] = None
    text: Optional[WhatsAppText] = None


class WhatsAppProfile(_Envelope):
    name: Optional[str] = None


class WhatsAppContact(_Envelope):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppMetadata(_Envelope):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WhatsAppChangeValue(_Envelope):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppInboundMessage] = Field(default_factory=list)
    statuses: list[dict] = Field(default_factory=list)


class WhatsAppChange(_Envelope):
    field: Optional[str] = None
    value: Optional[WhatsAppChangeValue] = None


class WhatsAppEntry(_Envelope):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(_Envelope):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    status: str = "received"
