"""WhatsApp embedded-signup handshake: OAuth code -> access token -> connected channel."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.logging_config import get_logger
from app.models import Channel
from app.services.errors import ChannelConflictError, InvalidInputError, RelayError

logger = get_logger("onboarding_service")

DEFAULT_DISPLAY_NAME = "WhatsApp Business"


class OnboardingError(RelayError):
    status_code = 500
    code = "onboarding_failed"

    def __init__(self, detail: Optional[str] = None):
        super().__init__("WhatsApp onboarding failed", detail=detail)


class OnboardingService:
    def __init__(self, db: Session, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self.settings = settings
        self.transport = transport

    async def exchange_code(self, code: str) -> str:
        """Trade the embedded-signup OAuth code for an access token."""
        params = {
            "client_id": self.settings.meta_app_id,
            "client_secret": self.settings.meta_app_secret,
            "redirect_uri": self.settings.meta_redirect_uri,
            "code": code,
        }
        try:
            async with httpx.AsyncClient(timeout=self.settings.whatsapp_timeout_seconds, transport=self.transport) as client:
                response = await client.get(f"{self.settings.graph_api_url}/oauth/access_token", params=params)
                response.raise_for_status()
                token = response.json().get("access_token")
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("OAuth code exchange failed", extra={"context": {"error": str(exc)}})
            raise OnboardingError(str(exc)) from exc

        if not token:
            raise OnboardingError("access_token missing from Graph response")
        return token

    def _ensure_number_available(self, org_id: UUID, phone_number_id: str) -> None:
        """A phone_number_id routes inbound traffic to exactly one org."""
        claimed = (
            self.db.query(Channel.id)
            .filter(
                Channel.phone_number_id == phone_number_id,
                Channel.org_id != org_id,
                Channel.status == "connected",
            )
            .first()
        )
        if claimed:
            logger.warning(
                "phone_number_id already connected to another org",
                extra={"context": {"org_id": str(org_id), "phone_number_id": phone_number_id}},
            )
            raise ChannelConflictError("This WhatsApp number is already connected to another organization")

    def upsert_channel(self, org_id: UUID, phone_number_id: str, waba_id: str, access_token: str) -> Channel:
        """Create or refresh the org's channel for ``phone_number_id``."""
        now = datetime.now(timezone.utc)
        try:
            self._ensure_number_available(org_id, phone_number_id)
            channel = (
                self.db.query(Channel)
                .filter(Channel.org_id == org_id, Channel.phone_number_id == phone_number_id)
                .first()
            )
            if not channel:
                channel = Channel(
                    org_id=org_id,
                    platform="whatsapp",
                    phone_number_id=phone_number_id,
                    display_name=DEFAULT_DISPLAY_NAME,
                    created_at=now,
                )
                self.db.add(channel)
            channel.waba_id = waba_id
            channel.access_token = access_token
            channel.status = "connected"
            channel.updated_at = now
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Channel upsert failed", extra={"context": {"org_id": str(org_id), "error": str(exc)}})
            raise OnboardingError(str(exc)) from exc
        return channel

    async def connect_whatsapp(
        self,
        org_id: UUID,
        code: Optional[str],
        phone_number_id: Optional[str],
        waba_id: Optional[str],
    ) -> Channel:
        if not code:
            raise InvalidInputError("Missing OAuth code")
        if not phone_number_id or not waba_id:
            raise InvalidInputError("Missing phone_number_id or waba_id from embedded signup")

        # before the exchange: the OAuth code is single-use
        try:
            self._ensure_number_available(org_id, phone_number_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise OnboardingError(str(exc)) from exc

        access_token = await self.exchange_code(code)
        channel = self.upsert_channel(org_id, phone_number_id, waba_id, access_token)
        logger.info(
            "WhatsApp channel connected",
            extra={"context": {"org_id": str(org_id), "phone_number_id": phone_number_id, "channel_id": str(channel.id)}},
        )
        return channel
