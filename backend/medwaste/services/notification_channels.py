"""Outbound delivery channels. Every sender returns a ChannelResult and never raises on transport errors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import requests

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRecipient:
    user_id: UUID | None
    phone: str | None
    name: str | None = None
    telegram_chat_id: str | None = None


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


ChannelSender = Callable[[NotificationRecipient, str], ChannelResult]


def _format_whatsapp_address(phone: str) -> str:
    return phone if phone.startswith("whatsapp:") else f"whatsapp:{phone}"


def send_sms(recipient: NotificationRecipient, message: str) -> ChannelResult:
    """Send SMS via Mobizon."""
    if not recipient.phone:
        return ChannelResult(success=False, error="Phone is required")
    if not settings.MOBIZON_API_KEY:
        return ChannelResult(success=False, error="SMS provider not configured")

    try:
        response = requests.post(
            settings.MOBIZON_API_URL,
            params={"output": "json", "api": "v1", "apiKey": settings.MOBIZON_API_KEY},
            data={"recipient": recipient.phone.lstrip("+"), "text": message},
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        logger.warning("Mobizon request failed: %s", exc)
        return ChannelResult(success=False, error=f"EXCEPTION: {exc}")

    if response.status_code != 200:
        return ChannelResult(success=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")

    payload = response.json()
    if payload.get("code") != 0:
        return ChannelResult(success=False, error=str(payload.get("message") or f"MOBIZON_{payload.get('code')}"))
    message_id = (payload.get("data") or {}).get("messageId")
    return ChannelResult(success=True, message_id=str(message_id) if message_id is not None else None)


def send_whatsapp(recipient: NotificationRecipient, message: str) -> ChannelResult:
    """Send WhatsApp message via Twilio Messages API."""
    if not recipient.phone:
        return ChannelResult(success=False, error="Phone is required")
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_WHATSAPP_FROM):
        return ChannelResult(success=False, error="Twilio WhatsApp is not configured")

    url = f"{settings.TWILIO_API_BASE}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
    try:
        response = requests.post(
            url,
            data={
                "From": _format_whatsapp_address(settings.TWILIO_WHATSAPP_FROM),
                "To": _format_whatsapp_address(recipient.phone),
                "Body": message,
            },
            auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        logger.warning("Twilio request failed: %s", exc)
        return ChannelResult(success=False, error=f"EXCEPTION: {exc}")

    if response.status_code not in (200, 201):
        return ChannelResult(success=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")
    return ChannelResult(success=True, message_id=response.json().get("sid"))


def send_telegram(recipient: NotificationRecipient, message: str) -> ChannelResult:
    """Send message via Telegram Bot API to a linked chat."""
    if not recipient.telegram_chat_id:
        return ChannelResult(success=False, error="Telegram chat is not linked")
    if not settings.TELEGRAM_BOT_TOKEN:
        return ChannelResult(success=False, error="Telegram bot is not configured")

    url = f"https://api.telegram.org/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
    try:
        response = requests.post(
            url,
            json={"chat_id": recipient.telegram_chat_id, "text": message},
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        return ChannelResult(success=False, error=f"EXCEPTION: {exc}")

    if response.status_code == 200:
        result = response.json().get("result") or {}
        message_id = result.get("message_id")
        return ChannelResult(success=True, message_id=str(message_id) if message_id is not None else None)
    if response.status_code == 429:
        retry_after = response.json().get("parameters", {}).get("retry_after", 60)
        return ChannelResult(success=False, error=f"RATE_LIMIT:{retry_after}")
    if response.status_code == 403:
        # Bot blocked by user
        return ChannelResult(success=False, error="BOT_BLOCKED")
    return ChannelResult(success=False, error=f"HTTP_{response.status_code}: {response.text[:200]}")


CHANNEL_SENDERS: dict[str, ChannelSender] = {
    "sms": send_sms,
    "whatsapp": send_whatsapp,
    "telegram": send_telegram,
}
