"""Fan a confirmation request out over the configured channels and log every attempt."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from ..models import Handoff, NotificationLog
from .notification_channels import ChannelResult, ChannelSender, NotificationRecipient

logger = logging.getLogger(__name__)

MESSAGE_PREFIX = "MedWaste: подтвердите прием отходов."


@dataclass(frozen=True)
class ChannelAttempt:
    channel: str
    result: ChannelResult
    log: NotificationLog


def build_confirmation_url(secret: str, *, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{secret}"


def build_confirmation_message(*, handoff_code: str, confirm_url: str | None = None) -> str:
    message = f"{MESSAGE_PREFIX} Акт {handoff_code}"
    if confirm_url:
        return f"{message}. {confirm_url}"
    return message


def _attempt(sender: ChannelSender | None, channel: str, recipient: NotificationRecipient, message: str) -> ChannelResult:
    if sender is None:
        return ChannelResult(success=False, error=f"Unsupported channel: {channel}")
    try:
        return sender(recipient, message)
    except Exception as exc:
        # A broken channel must not stop the remaining ones; the failure is kept in the log row.
        logger.exception("Notification channel %s raised", channel)
        return ChannelResult(success=False, error=str(exc) or exc.__class__.__name__)


def dispatch_notification(
    db: Session,
    *,
    handoff: Handoff,
    recipient: NotificationRecipient,
    message: str,
    channels: Iterable[str],
    senders: Mapping[str, ChannelSender],
    prior_attempts: Mapping[str, int] | None = None,
    at: datetime,
) -> list[ChannelAttempt]:
    """Try every channel in order; one NotificationLog row per channel regardless of outcome."""
    prior_attempts = prior_attempts or {}
    attempts: list[ChannelAttempt] = []

    for channel in channels:
        result = _attempt(senders.get(channel), channel, recipient, message)
        log = NotificationLog(
            id=uuid.uuid4(),
            handoff_id=handoff.id,
            recipient_user_id=recipient.user_id,
            recipient_phone=recipient.phone,
            recipient_name=recipient.name,
            channel=channel,
            status="sent" if result.success else "failed",
            provider_message_id=result.message_id,
            content=message,
            sent_at=at if result.success else None,
            failure_reason=None if result.success else result.error,
            retry_count=prior_attempts.get(channel, 0),
            created_at=at,
        )
        db.add(log)
        attempts.append(ChannelAttempt(channel=channel, result=result, log=log))

        if result.success:
            logger.info("Handoff %s notification sent via %s", handoff.handoff_code, channel)
        else:
            logger.warning("Handoff %s notification via %s failed: %s", handoff.handoff_code, channel, result.error)

    return attempts
