"""Operator alerts for money-path anomalies, delivered to a Telegram chat."""

import asyncio
from typing import Optional

import httpx

from app.config import get_settings
from app.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"
LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}

_pending_alerts: set[asyncio.Future] = set()


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}* · webautomy-relay\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to the operator chat. Returns True if Telegram accepted it."""
    settings = get_settings()
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                TELEGRAM_SEND_URL.format(token=settings.alert_bot_token),
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def _dispatch_alert(level: str, message: str, context: Optional[dict]) -> Optional[asyncio.Future]:
    """Send inline when no event loop is running, otherwise on the default executor.

    The returned future is only for callers that want to wait on delivery.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        send_alert(level, message, context)
        return None

    future = loop.run_in_executor(None, send_alert, level, message, context)
    _pending_alerts.add(future)
    future.add_done_callback(_pending_alerts.discard)
    return future


def alert_warning(message: str, context: Optional[dict] = None) -> Optional[asyncio.Future]:
    return _dispatch_alert("WARNING", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> Optional[asyncio.Future]:
    return _dispatch_alert("CRITICAL", message, context)
