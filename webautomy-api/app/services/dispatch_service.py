"""Metered outbound send: verify channel, debit, send, then persist or refund.

Ordering per request is fixed: the debit commits before the WhatsApp call, and
the refund (on failure) or the message insert (on success) finishes before the
caller gets an answer.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.logging_config import LoggerAdapter, bind_logger
from app.models import Channel, Message
from app.services.alert_service import alert_critical
from app.services.dispatch_state import DispatchState, transition
from app.services.errors import InsufficientFundsError, InvalidInputError, PersistenceError, UnauthorizedError
from app.services.wallet_service import WalletService, to_amount
from app.services.whatsapp_service import OutboundPayload, WhatsAppService, build_payload

REFUND_REASON = "Refund: WhatsApp send failed"


@dataclass
class DispatchReceipt:
    state: DispatchState
    correlation_id: str
    fee: Decimal
    whatsapp_message_id: Optional[str] = None
    message_id: Optional[UUID] = None


class _Transaction:
    """Tracks one send request through its states."""

    def __init__(self, log: LoggerAdapter):
        self.state = DispatchState.RECEIVED
        self.log = log

    def advance(self, to_state: DispatchState) -> None:
        self.state = transition(self.state, to_state)
        self.log.debug(f"Dispatch -> {to_state.value}")


def _coerce_uuid(value: Union[UUID, str, None]) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class DispatchService:
    def __init__(
        self,
        db: Session,
        wallet: WalletService,
        whatsapp: WhatsAppService,
        service_fee: Decimal,
    ):
        self.db = db
        self.wallet = wallet
        self.whatsapp = whatsapp
        self.service_fee = to_amount(service_fee)

    @classmethod
    def from_settings(cls, db: Session, settings: Settings, whatsapp: Optional[WhatsAppService] = None):
        return cls(
            db,
            WalletService(db),
            whatsapp or WhatsAppService.from_settings(settings),
            settings.service_fee,
        )

    def _load_channel(self, org_id: UUID, channel_id: Union[UUID, str]) -> Channel:
        parsed_id = _coerce_uuid(channel_id)
        if parsed_id is None:
            raise UnauthorizedError("Unauthorized channel access")
        try:
            channel = self.db.query(Channel).filter(Channel.id == parsed_id).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError("Failed to load channel", detail=str(exc)) from exc

        if not channel or channel.org_id != org_id or not channel.is_connected:
            raise UnauthorizedError("Unauthorized channel access")
        return channel

    def _persist_outbound(
        self,
        org_id: UUID,
        channel: Channel,
        payload: OutboundPayload,
        whatsapp_message_id: Optional[str],
        contact_id: Optional[UUID],
        log: LoggerAdapter,
    ) -> Optional[UUID]:
        """Insert the outbound record. Failure here is logged only: the paid send did happen."""
        content = payload.body if payload.kind == "text" else payload.caption
        message = Message(
            org_id=org_id,
            contact_id=contact_id,
            channel_id=channel.id,
            direction="outbound",
            content=content,
            whatsapp_message_id=whatsapp_message_id,
            status="sent",
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(message)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            log.error(
                "Outbound message sent but not persisted",
                context={"whatsapp_message_id": whatsapp_message_id, "error": str(exc)},
            )
            alert_critical(
                "Outbound message sent but not persisted",
                {"org_id": str(org_id), "whatsapp_message_id": whatsapp_message_id},
            )
            return None
        return message.id

    async def dispatch_outbound(
        self,
        org_id: UUID,
        channel_id: Union[UUID, str],
        recipient: str,
        body: Optional[str] = None,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        *,
        contact_id: Optional[UUID] = None,
        correlation_id: Optional[str] = None,
    ) -> DispatchReceipt:
        """Run one metered send. Raises a RelayError subclass on any rejection or failure."""
        correlation_id = correlation_id or str(uuid.uuid4())
        log = bind_logger(
            "dispatch_service",
            org_id=str(org_id),
            channel_id=str(channel_id),
            correlation_id=correlation_id,
        )
        tx = _Transaction(log)

        try:
            recipient = (recipient or "").strip()
            if not recipient or not channel_id:
                raise InvalidInputError("Missing required fields")
            payload = build_payload(body, media_url, media_type)
        except InvalidInputError:
            tx.advance(DispatchState.REJECTED_INVALID_INPUT)
            raise

        try:
            channel = self._load_channel(org_id, channel_id)
        except UnauthorizedError:
            tx.advance(DispatchState.REJECTED_UNAUTHORIZED)
            log.warning("Dispatch rejected: channel not owned by org")
            raise
        tx.advance(DispatchState.CHANNEL_VERIFIED)

        try:
            self.wallet.debit_or_fail(org_id, self.service_fee, correlation_id)
        except InsufficientFundsError:
            tx.advance(DispatchState.REJECTED_INSUFFICIENT_FUNDS)
            raise
        tx.advance(DispatchState.DEBITED)

        try:
            sent = await self.whatsapp.send(channel.phone_number_id, channel.access_token, recipient, payload)
        except Exception as exc:
            tx.advance(DispatchState.SEND_FAILED)
            log.warning("Send failed, refunding", context={"error": str(exc)})
            if self.wallet.credit(org_id, self.service_fee, correlation_id, REFUND_REASON):
                tx.advance(DispatchState.CREDITED)
            else:
                log.error("Refund failed after send failure; reconciliation required")
            raise
        tx.advance(DispatchState.SENT)

        message_id = self._persist_outbound(org_id, channel, payload, sent.whatsapp_message_id, contact_id, log)
        if message_id is not None:
            tx.advance(DispatchState.PERSISTED)

        log.info("Dispatch complete", context={"state": tx.state.value, "message_id": str(message_id)})
        return DispatchReceipt(
            state=tx.state,
            correlation_id=correlation_id,
            fee=self.service_fee,
            whatsapp_message_id=sent.whatsapp_message_id,
            message_id=message_id,
        )
