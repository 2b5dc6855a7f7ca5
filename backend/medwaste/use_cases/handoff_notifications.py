"""Receiver notification use-cases: initial dispatch and manual resend."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import DomainError
from ..models import Handoff, User
from ..services.handoff_rules import HANDOFF_TYPE_DRIVER_TO_INCINERATOR, OPEN_STATUSES, TERMINAL_STATUSES
from ..services.notification_channels import NotificationRecipient
from ..services.notification_dispatch import (
    ChannelAttempt,
    build_confirmation_message,
    build_confirmation_url,
    dispatch_notification,
)
from .handoff_hooks import HandoffUseCaseHooks, handoff_not_found

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandoffResendResult:
    handoff: Handoff
    notifications: list[ChannelAttempt]


def _recipient_for(db: Session, handoff: Handoff, channels: list[str], hooks: HandoffUseCaseHooks) -> NotificationRecipient:
    chat_id = None
    if "telegram" in channels and handoff.receiver_user_id is not None:
        account: Any = hooks.get_user(db, handoff.receiver_user_id)
        chat_id = getattr(account, "telegram_chat_id", None)
    return NotificationRecipient(
        user_id=handoff.receiver_user_id,
        phone=handoff.receiver_phone,
        name=handoff.receiver_name,
        telegram_chat_id=chat_id,
    )


def notify_receiver(
    *,
    db: Session,
    handoff: Handoff,
    secret: str | None,
    hooks: HandoffUseCaseHooks,
    at: datetime,
) -> list[ChannelAttempt]:
    """Send the confirmation request on every configured channel. Never raises on delivery failure."""
    channels = list(hooks.notification_channels())
    confirm_url = build_confirmation_url(secret, base_url=settings.PUBLIC_CONFIRM_BASE_URL) if secret else None
    return dispatch_notification(
        db,
        handoff=handoff,
        recipient=_recipient_for(db, handoff, channels, hooks),
        message=build_confirmation_message(handoff_code=handoff.handoff_code, confirm_url=confirm_url),
        channels=channels,
        senders=hooks.channel_senders,
        prior_attempts=hooks.count_notification_attempts(db, handoff.id),
        at=at,
    )


def resend_notification_use_case(
    *,
    handoff_ref: str,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> HandoffResendResult:
    now = hooks.now_utc()
    handoff = hooks.find_handoff(db, handoff_ref, current_user)
    if handoff is None:
        raise handoff_not_found()
    if handoff.status in TERMINAL_STATUSES:
        raise DomainError(
            code="HANDOFF_NOT_NOTIFIABLE",
            http_status=409,
            message=f"Cannot resend notification for {handoff.status} handoff",
        )
    if not handoff.receiver_phone:
        raise DomainError(
            code="HANDOFF_RECEIVER_PHONE_MISSING",
            http_status=400,
            message="Receiver phone is missing",
        )

    secret = None
    if handoff.type == HANDOFF_TYPE_DRIVER_TO_INCINERATOR and handoff.status in OPEN_STATUSES:
        issued = hooks.issue_token(ttl_hours=settings.HANDOFF_TOKEN_TTL_HOURS, at=now)
        handoff.confirmation_token_hash = issued.token_hash
        handoff.token_expires_at = issued.expires_at
        handoff.updated_at = now
        secret = issued.secret

    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_notification_resent",
        user=current_user,
        details={"token_reissued": secret is not None},
    )
    db.commit()

    attempts = notify_receiver(db=db, handoff=handoff, secret=secret, hooks=hooks, at=now)
    db.commit()
    logger.info(
        "Handoff %s notification resent by %s: %d/%d channels delivered",
        handoff.handoff_code,
        current_user.id,
        sum(1 for attempt in attempts if attempt.result.success),
        len(attempts),
    )
    return HandoffResendResult(handoff=handoff, notifications=attempts)
