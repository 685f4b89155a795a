"""Inbound WhatsApp events: channel -> org routing, contact upsert, persistence, auto-replies.

Nothing here reports back to Meta; the webhook is acknowledged before any of
this runs, so every failure ends in a log line.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import SessionLocal
from app.logging_config import get_logger
from app.models import Channel, Contact, Message
from app.schemas.webhook import WhatsAppWebhookPayload
from app.services.dispatch_service import DispatchService
from app.services.errors import RelayError, RemoteError
from app.services.result import Result
from app.services.rule_matcher import RuleMatcher
from app.services.whatsapp_service import TextPayload, WhatsAppService

logger = get_logger("inbound_service")

UNKNOWN_CONTACT_NAME = "Unknown"

_background_tasks: set[asyncio.Task] = set()


@dataclass(frozen=True)
class InboundEvent:
    phone_number_id: Optional[str]
    sender: Optional[str]
    message_id: Optional[str]
    text: Optional[str]
    contact_name: str = UNKNOWN_CONTACT_NAME


@dataclass(frozen=True)
class InboundOutcome:
    org_id: UUID
    channel_id: UUID
    contact_id: UUID
    message_id: Optional[UUID]
    sender: str
    text: str
    duplicate: bool = False


@dataclass(frozen=True)
class AutoReply:
    rule_id: UUID
    reply_message: str


def parse_webhook_events(payload: Any) -> list[InboundEvent]:
    """Flatten a Meta webhook envelope into text-message events.

    Malformed envelopes yield nothing. Status callbacks and messages without a
    text body (media, reactions, receipts) are dropped here.
    """
    if not isinstance(payload, dict):
        return []
    try:
        envelope = WhatsAppWebhookPayload.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Webhook envelope rejected", extra={"context": {"error": str(exc)[:300]}})
        return []

    events: list[InboundEvent] = []
    for entry in envelope.entry:
        for change in entry.changes:
            value = change.value
            if not value or not value.messages:
                continue
            phone_number_id = value.metadata.phone_number_id if value.metadata else None
            names = {
                contact.wa_id: contact.profile.name
                for contact in value.contacts
                if contact.wa_id and contact.profile and contact.profile.name
            }
            fallback_name = next(iter(names.values()), UNKNOWN_CONTACT_NAME)
            for message in value.messages:
                text = message.text.body if message.text else None
                if not text or not text.strip():
                    continue
                events.append(
                    InboundEvent(
                        phone_number_id=phone_number_id,
                        sender=message.from_number,
                        message_id=message.id,
                        text=text,
                        contact_name=names.get(message.from_number, fallback_name),
                    )
                )
    return events


def get_or_create_contact(db: Session, org_id: UUID, phone: str, name: Optional[str]) -> Contact:
    """Find contact by (org, phone) or create it; a concurrent insert of the same key is reused."""
    contact = db.query(Contact).filter(Contact.org_id == org_id, Contact.phone == phone).first()
    if contact:
        return contact

    contact = Contact(
        org_id=org_id,
        phone=phone,
        name=name or UNKNOWN_CONTACT_NAME,
        created_at=datetime.now(timezone.utc),
    )
    try:
        with db.begin_nested():
            db.add(contact)
    except IntegrityError:
        contact = db.query(Contact).filter(Contact.org_id == org_id, Contact.phone == phone).first()
        if contact is None:
            raise
    return contact


def _is_duplicate(db: Session, org_id: UUID, whatsapp_message_id: Optional[str]) -> bool:
    if not whatsapp_message_id:
        return False
    existing = (
        db.query(Message.id)
        .filter(
            Message.org_id == org_id,
            Message.direction == "inbound",
            Message.whatsapp_message_id == whatsapp_message_id,
        )
        .first()
    )
    return existing is not None


def process_inbound_event(db: Session, event: InboundEvent) -> Result[InboundOutcome]:
    """Persist one inbound text message under the org that owns the receiving channel."""
    context = {"phone_number_id": event.phone_number_id, "from": event.sender, "message_id": event.message_id}
    if not event.phone_number_id or not event.sender or not (event.text or "").strip():
        logger.info("Inbound event skipped: incomplete", extra={"context": context})
        return Result.failure("Incomplete inbound event", "invalid_event")

    try:
        channels = (
            db.query(Channel)
            .filter(Channel.phone_number_id == event.phone_number_id, Channel.status == "connected")
            .limit(2)
            .all()
        )
        if not channels:
            logger.error("Webhook received for unknown phone_number_id", extra={"context": context})
            return Result.failure(f"Unknown phone_number_id {event.phone_number_id}", "unknown_channel")
        if len(channels) > 1:
            # several orgs claim this number
            logger.error("phone_number_id connected to more than one org", extra={"context": context})
            return Result.failure(f"Ambiguous phone_number_id {event.phone_number_id}", "ambiguous_channel")

        channel = channels[0]
        org_id = channel.org_id
        contact = get_or_create_contact(db, org_id, event.sender, event.contact_name)

        if _is_duplicate(db, org_id, event.message_id):
            db.commit()
            logger.info("Duplicate inbound delivery ignored", extra={"context": context})
            return Result.success(
                InboundOutcome(org_id, channel.id, contact.id, None, event.sender, event.text, duplicate=True)
            )

        message = Message(
            org_id=org_id,
            contact_id=contact.id,
            channel_id=channel.id,
            direction="inbound",
            content=event.text,
            whatsapp_message_id=event.message_id,
            status="received",
            created_at=datetime.now(timezone.utc),
        )
        db.add(message)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Inbound persistence failed", extra={"context": {**context, "error": str(exc)}})
        return Result.failure("Inbound persistence failed", "db_error")

    logger.info("Inbound saved", extra={"context": {**context, "org_id": str(org_id)}})
    return Result.success(
        InboundOutcome(
            org_id=org_id,
            channel_id=channel.id,
            contact_id=contact.id,
            message_id=message.id,
            sender=event.sender,
            text=event.text,
        )
    )


async def _send_free_reply(
    db: Session,
    whatsapp: WhatsAppService,
    outcome: InboundOutcome,
    reply: AutoReply,
) -> Result[Message]:
    """Unmetered auto-reply: no wallet deduction, the attempt is recorded either way."""
    channel = db.query(Channel).filter(Channel.id == outcome.channel_id).first()
    if not channel:
        return Result.failure("Channel disappeared", "unknown_channel")

    status = "sent"
    whatsapp_message_id = None
    try:
        sent = await whatsapp.send(
            channel.phone_number_id,
            channel.access_token,
            outcome.sender,
            TextPayload(body=reply.reply_message),
        )
        whatsapp_message_id = sent.whatsapp_message_id
    except RemoteError as exc:
        status = "failed"
        logger.warning(
            "Auto-reply send failed",
            extra={"context": {"org_id": str(outcome.org_id), "rule_id": str(reply.rule_id), "error": exc.detail}},
        )

    record = Message(
        org_id=outcome.org_id,
        contact_id=outcome.contact_id,
        channel_id=channel.id,
        direction="outbound",
        content=reply.reply_message,
        whatsapp_message_id=whatsapp_message_id,
        status=status,
        created_at=datetime.now(timezone.utc),
    )
    db.add(record)
    db.commit()
    if status != "sent":
        return Result.failure("Auto-reply send failed", RemoteError.code)
    return Result.success(record)


async def run_auto_reply(
    outcome: InboundOutcome,
    settings: Settings,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    whatsapp: Optional[WhatsAppService] = None,
) -> Result[Optional[AutoReply]]:
    """Match the inbound text against the org's rules and send the reply, if any.

    Runs detached from the webhook request; everything that goes wrong is
    logged and turned into a failed Result. The returned AutoReply is a plain
    snapshot of the matched rule, readable after the session is closed.
    """
    if settings.auto_reply_delay_seconds > 0:
        await asyncio.sleep(settings.auto_reply_delay_seconds)

    whatsapp = whatsapp or WhatsAppService.from_settings(settings)
    db = session_factory()
    try:
        rule = RuleMatcher(db).match(outcome.org_id, outcome.text)
        if not rule:
            return Result.success(None)
        reply = AutoReply(rule_id=rule.id, reply_message=rule.reply_message)

        if settings.auto_reply_metered:
            dispatcher = DispatchService.from_settings(db, settings, whatsapp)
            try:
                await dispatcher.dispatch_outbound(
                    outcome.org_id,
                    outcome.channel_id,
                    outcome.sender,
                    body=reply.reply_message,
                    contact_id=outcome.contact_id,
                    correlation_id=str(outcome.message_id) if outcome.message_id else None,
                )
            except RelayError as exc:
                logger.warning(
                    "Metered auto-reply not sent",
                    extra={"context": {"org_id": str(outcome.org_id), "rule_id": str(reply.rule_id), "error": exc.code}},
                )
                return Result.from_error(exc)
            return Result.success(reply)

        sent = await _send_free_reply(db, whatsapp, outcome, reply)
        if not sent.ok:
            return Result.failure(sent.error, sent.error_code)
        return Result.success(reply)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Auto-reply failed",
            extra={"context": {"org_id": str(outcome.org_id), "contact_id": str(outcome.contact_id)}},
        )
        return Result.failure(str(exc), "auto_reply_error")
    finally:
        db.close()


def schedule_auto_reply(outcome: InboundOutcome, settings: Settings) -> asyncio.Task:
    """Start the auto-reply as its own task so the inbound path never waits on it."""
    task = asyncio.create_task(run_auto_reply(outcome, settings))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def process_webhook_events(
    events: list[InboundEvent],
    settings: Settings,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
) -> list[Result[InboundOutcome]]:
    """Background half of ``POST /webhook``."""
    results: list[Result[InboundOutcome]] = []
    db = session_factory()
    try:
        for event in events:
            try:
                result = process_inbound_event(db, event)
            except Exception as exc:
                db.rollback()
                logger.exception("Webhook processing error", extra={"context": {"message_id": event.message_id}})
                result = Result.failure(str(exc), "processing_error")
            results.append(result)
            if result.ok and not result.value.duplicate:
                schedule_auto_reply(result.value, settings)
    finally:
        db.close()
    return results
