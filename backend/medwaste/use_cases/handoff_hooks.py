"""Collaborator hooks shared by handoff use-cases."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping

from ..config import settings
from ..domain_errors import DomainError
from ..models import AuditEvent, CollectionSession, Handoff
from ..services import handoff_store
from ..services.handoff_rules import now_utc
from ..services.handoff_tokens import IssuedToken, issue_confirmation_token
from ..services.notification_channels import CHANNEL_SENDERS, ChannelSender


def _configured_channels() -> list[str]:
    return settings.notification_channels


@dataclass(frozen=True)
class HandoffUseCaseHooks:
    """Persistence, clock, token and delivery collaborators for handoff use-cases."""

    find_session: Callable[..., CollectionSession | None] = handoff_store.find_session
    find_active_session_for_driver: Callable[..., CollectionSession | None] = (
        handoff_store.find_active_session_for_driver
    )
    find_active_handoff: Callable[..., Handoff | None] = handoff_store.find_active_handoff
    find_completed_handoff: Callable[..., Handoff | None] = handoff_store.find_completed_handoff
    find_handoff: Callable[..., Handoff | None] = handoff_store.find_handoff
    find_handoff_by_token_hash: Callable[..., Handoff | None] = handoff_store.find_handoff_by_token_hash
    find_overdue_handoffs: Callable[..., list[Handoff]] = handoff_store.find_overdue_handoffs
    list_handoffs: Callable[..., tuple[list, int]] = handoff_store.list_handoffs
    list_session_handoffs: Callable[..., list[Handoff]] = handoff_store.list_session_handoffs
    list_notification_logs: Callable[..., tuple[list, int]] = handoff_store.list_notification_logs
    count_notification_attempts: Callable[..., dict[str, int]] = handoff_store.count_notification_attempts
    load_waste_bins: Callable[..., list] = handoff_store.load_waste_bins
    get_user: Callable[..., object] = handoff_store.get_user
    get_plant: Callable[..., object] = handoff_store.get_plant
    next_handoff_code: Callable[..., str] = handoff_store.next_handoff_code
    next_chain_code: Callable[..., str] = handoff_store.next_chain_code
    record_audit: Callable[..., AuditEvent] = handoff_store.record_handoff_audit
    issue_token: Callable[..., IssuedToken] = issue_confirmation_token
    channel_senders: Mapping[str, ChannelSender] = field(default_factory=lambda: dict(CHANNEL_SENDERS))
    notification_channels: Callable[[], list[str]] = _configured_channels
    now_utc: Callable[[], datetime] = now_utc


HANDOFF_USE_CASE_HOOKS = HandoffUseCaseHooks()


def handoff_not_found() -> DomainError:
    return DomainError(code="HANDOFF_NOT_FOUND", http_status=404, message="Handoff not found")
