import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import Settings, get_settings
from app.logging_config import get_logger
from app.schemas.webhook import WebhookAck
from app.services.inbound_service import parse_webhook_events, process_webhook_events

logger = get_logger("webhook")

router = APIRouter()

SIGNATURE_HEADER = "X-Hub-Signature-256"


def verify_signature(raw_body: bytes, signature: Optional[str], app_secret: Optional[str]) -> bool:
    """Check Meta's ``sha256=<hex>`` body signature. Without an app secret every body passes."""
    if not app_secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


@router.get("/webhook")
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    if mode == "subscribe" and settings.meta_verify_token and token == settings.meta_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    return JSONResponse({"error": "Forbidden"}, status_code=403)


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
):
    """Acknowledge immediately; routing, persistence and auto-replies run after the response."""
    raw_body = await request.body()

    if not verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), settings.meta_app_secret):
        logger.warning("Webhook signature mismatch, payload dropped")
        return WebhookAck()

    try:
        payload = json.loads(raw_body) if raw_body else None
    except ValueError:
        logger.warning("Webhook body is not JSON", extra={"context": {"size": len(raw_body)}})
        return WebhookAck()

    events = parse_webhook_events(payload)
    if events:
        background_tasks.add_task(process_webhook_events, events, settings)
    else:
        logger.debug("Webhook carried no text messages")
    return WebhookAck()
