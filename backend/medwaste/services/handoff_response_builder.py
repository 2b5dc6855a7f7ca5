"""Handoff response serialization helpers."""
from __future__ import annotations

from typing import Iterable

from ..models import Handoff, NotificationLog
from ..schemas import (
    HandoffContainerOut,
    HandoffDisputeOut,
    HandoffOut,
    HandoffPartyOut,
    HandoffPublicContainerOut,
    HandoffPublicOut,
    NotificationLogOut,
    NotificationResultOut,
)
from .handoff_rules import get_party
from .notification_dispatch import ChannelAttempt


def _party_out(handoff: Handoff, side: str) -> HandoffPartyOut:
    party = get_party(handoff, side)
    return HandoffPartyOut(
        user_id=party.user_id,
        role=party.role,
        name=party.name,
        phone=party.phone,
        confirmed_at=party.confirmed_at,
    )


def _dispute_out(handoff: Handoff) -> HandoffDisputeOut | None:
    if handoff.dispute_raised_at is None:
        return None
    return HandoffDisputeOut(
        raised_by_id=handoff.dispute_raised_by_id,
        role=handoff.dispute_role,
        reason=handoff.dispute_reason,
        description=handoff.dispute_description,
        evidence=list(handoff.dispute_evidence or []),
        raised_at=handoff.dispute_raised_at,
        resolved_by_id=handoff.dispute_resolved_by_id,
        resolution=handoff.dispute_resolution,
        resolved_at=handoff.dispute_resolved_at,
    )


def handoff_to_out(handoff: Handoff) -> HandoffOut:
    return HandoffOut(
        id=handoff.id,
        handoff_code=handoff.handoff_code,
        chain_id=handoff.chain_id,
        type=handoff.type,
        sequence=handoff.sequence,
        session_id=handoff.session_id,
        company_id=handoff.company_id,
        facility_id=handoff.facility_id,
        incineration_plant_id=handoff.incineration_plant_id,
        sender=_party_out(handoff, "sender"),
        receiver=_party_out(handoff, "receiver"),
        containers=[HandoffContainerOut.model_validate(item) for item in handoff.containers],
        total_containers=handoff.total_containers or 0,
        total_declared_weight=handoff.total_declared_weight or 0.0,
        total_confirmed_weight=handoff.total_confirmed_weight or 0.0,
        status=handoff.status,
        dispute=_dispute_out(handoff),
        token_expires_at=handoff.token_expires_at,
        completed_at=handoff.completed_at,
        expires_at=handoff.expires_at,
        created_at=handoff.created_at,
        updated_at=handoff.updated_at,
    )


def handoff_to_public_out(handoff: Handoff) -> HandoffPublicOut:
    return HandoffPublicOut(
        handoff_code=handoff.handoff_code,
        type=handoff.type,
        containers=[HandoffPublicContainerOut.model_validate(item) for item in handoff.containers],
        total_containers=handoff.total_containers or 0,
        total_declared_weight=handoff.total_declared_weight or 0.0,
        status=handoff.status,
        created_at=handoff.created_at,
        token_expires_at=handoff.token_expires_at,
    )


def attempts_to_out(attempts: Iterable[ChannelAttempt]) -> list[NotificationResultOut]:
    return [
        NotificationResultOut(
            channel=attempt.channel,
            success=attempt.result.success,
            message_id=attempt.result.message_id,
            error=attempt.result.error,
        )
        for attempt in attempts
    ]


def notification_logs_to_out(logs: Iterable[NotificationLog]) -> list[NotificationLogOut]:
    return [NotificationLogOut.model_validate(log) for log in logs]
