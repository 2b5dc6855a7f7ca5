"""Dispute and resolution use-cases."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..auth import check_permission
from ..domain_errors import DomainError, rule_violation
from ..models import Handoff, User
from ..schemas import HandoffDisputeRequest, HandoffResolveRequest
from ..services.handoff_rules import (
    close_dispute,
    ensure_disputable,
    ensure_resolvable,
    get_party,
    open_dispute,
)
from .handoff_hooks import HandoffUseCaseHooks, handoff_not_found

logger = logging.getLogger(__name__)


def dispute_handoff_use_case(
    *,
    handoff_ref: str,
    data: HandoffDisputeRequest,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> Handoff:
    now = hooks.now_utc()
    handoff = hooks.find_handoff(db, handoff_ref, current_user)
    if handoff is None:
        raise handoff_not_found()

    is_sender = get_party(handoff, "sender").is_user(current_user.id)
    if current_user.role == "driver" and not is_sender:
        raise DomainError(
            code="HANDOFF_DISPUTE_FORBIDDEN",
            http_status=403,
            message="Only the sending party can dispute this handoff",
        )

    try:
        ensure_disputable(status=handoff.status)
    except ValueError as error:
        raise rule_violation("HANDOFF_NOT_DISPUTABLE", error, status=handoff.status) from error

    previous_status = handoff.status
    open_dispute(
        handoff,
        raised_by_id=current_user.id,
        role=current_user.role,
        reason=data.reason,
        description=data.description,
        evidence=data.evidence,
        at=now,
    )
    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_disputed",
        user=current_user,
        details={"old_status": previous_status, "reason": data.reason},
    )
    db.commit()
    logger.info("Handoff %s disputed by %s", handoff.handoff_code, current_user.id)
    return handoff


def resolve_dispute_use_case(
    *,
    handoff_ref: str,
    data: HandoffResolveRequest,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> Handoff:
    if not check_permission(current_user, "canResolveDisputes"):
        raise DomainError(
            code="HANDOFF_RESOLVE_FORBIDDEN",
            http_status=403,
            message="Only supervisors can resolve disputes",
        )

    now = hooks.now_utc()
    handoff = hooks.find_handoff(db, handoff_ref, current_user)
    if handoff is None:
        raise handoff_not_found()

    try:
        ensure_resolvable(status=handoff.status)
    except ValueError as error:
        raise rule_violation("HANDOFF_NOT_DISPUTED", error, status=handoff.status) from error

    close_dispute(handoff, resolved_by_id=current_user.id, resolution=data.resolution, at=now)
    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_resolved",
        user=current_user,
        details={"resolution": data.resolution},
    )
    db.commit()
    logger.info("Handoff %s dispute resolved by %s", handoff.handoff_code, current_user.id)
    return handoff
