from app.schemas.onboarding import OnboardRequest, OnboardResponse
from app.schemas.send_message import SendMessageRequest, SendMessageResponse
from app.schemas.webhook import WebhookAck, WhatsAppWebhookPayload

__all__ = [
    "SendMessageRequest",
    "SendMessageResponse",
    "OnboardRequest",
    "OnboardResponse",
    "WebhookAck",
    "WhatsAppWebhookPayload",
]
