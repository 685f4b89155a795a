"""WhatsApp Cloud API (Meta Graph) client.

Pure API calls: no database access and no billing here.
"""

from dataclasses import dataclass
from typing import Optional, Union

import httpx

from app.config import Settings
from app.logging_config import get_logger
from app.services.errors import InvalidInputError, RemoteError

logger = get_logger("whatsapp_service")

SUPPORTED_MEDIA_TYPES = ("image", "document")


@dataclass(frozen=True)
class TextPayload:
    body: str

    kind = "text"

    def to_graph_payload(self) -> dict:
        return {"type": "text", "text": {"body": self.body}}


@dataclass(frozen=True)
class ImagePayload:
    link: str
    caption: Optional[str] = None

    kind = "image"

    def to_graph_payload(self) -> dict:
        image = {"link": self.link}
        if self.caption:
            image["caption"] = self.caption
        return {"type": "image", "image": image}


@dataclass(frozen=True)
class DocumentPayload:
    link: str
    caption: Optional[str] = None

    kind = "document"

    def to_graph_payload(self) -> dict:
        document = {"link": self.link}
        if self.caption:
            document["caption"] = self.caption
        return {"type": "document", "document": document}


OutboundPayload = Union[TextPayload, ImagePayload, DocumentPayload]


def build_payload(
    body: Optional[str] = None,
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
) -> OutboundPayload:
    """Pick the payload variant: media wins when a URL is given, body becomes its caption."""
    body = body.strip() if body else None
    media_url = media_url.strip() if media_url else None

    if media_url:
        kind = (media_type or "image").strip().lower()
        if kind == "image":
            return ImagePayload(link=media_url, caption=body)
        if kind == "document":
            return DocumentPayload(link=media_url, caption=body)
        raise InvalidInputError(f"Unsupported media type: {media_type}")

    if not body:
        raise InvalidInputError("Missing required fields")
    return TextPayload(body=body)


@dataclass(frozen=True)
class SendResult:
    whatsapp_message_id: Optional[str]


def _graph_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return response.text[:200]


class WhatsAppService:
    """Sends messages through a channel's phone number with its access token."""

    def __init__(
        self,
        graph_api_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.graph_api_url = graph_api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppService":
        return cls(settings.graph_api_url, timeout=settings.whatsapp_timeout_seconds)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def send(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        payload: OutboundPayload,
    ) -> SendResult:
        """Send one message. Raises RemoteError on network failure or a non-2xx answer."""
        url = f"{self.graph_api_url}/{phone_number_id}/messages"
        data = {"messaging_product": "whatsapp", "to": to, **payload.to_graph_payload()}
        headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}

        try:
            async with self._client() as client:
                response = await client.post(url, json=data, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(
                "WhatsApp API unreachable",
                extra={"context": {"phone_number_id": phone_number_id, "to": to, "error": str(exc)}},
            )
            raise RemoteError("WhatsApp send failed", detail=str(exc)) from exc

        if response.status_code >= 400:
            detail = _graph_error_message(response)
            logger.warning(
                "WhatsApp API rejected message",
                extra={
                    "context": {
                        "phone_number_id": phone_number_id,
                        "to": to,
                        "status": response.status_code,
                        "error": detail,
                    }
                },
            )
            raise RemoteError("WhatsApp send failed", upstream_status=response.status_code, detail=detail)

        try:
            body = response.json()
        except ValueError:
            body = {}
        messages = body.get("messages") if isinstance(body, dict) else None
        message_id = messages[0].get("id") if messages and isinstance(messages[0], dict) else None
        if not message_id:
            logger.warning(
                "WhatsApp API accepted message without id",
                extra={"context": {"phone_number_id": phone_number_id, "to": to}},
            )

        logger.info(
            "WhatsApp message sent",
            extra={"context": {"phone_number_id": phone_number_id, "to": to, "type": payload.kind, "id": message_id}},
        )
        return SendResult(whatsapp_message_id=message_id)
