"""Handoff confirmation use-cases: in-app party attestation and remote token confirmation."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, rule_violation
from ..models import Handoff, User
from ..services.handoff_rules import (
    DEFAULT_REMOTE_RECEIVER_ROLE,
    apply_and_rederive,
    clear_confirmation_token,
    ensure_confirmable,
    get_party,
    set_party,
)
from ..services.handoff_tokens import hash_confirmation_token, is_token_live
from .handoff_chain import advance_chain_after_completion
from .handoff_hooks import HandoffUseCaseHooks, handoff_not_found

logger = logging.getLogger(__name__)


def _token_invalid() -> DomainError:
    return DomainError(
        code="HANDOFF_TOKEN_INVALID",
        http_status=404,
        message="Invalid or expired token",
    )


def _ensure_confirmable(handoff: Handoff, *, at) -> None:
    try:
        ensure_confirmable(status=handoff.status, expires_at=handoff.expires_at, at=at)
    except ValueError as error:
        raise rule_violation("HANDOFF_NOT_CONFIRMABLE", error, status=handoff.status) from error


def confirm_handoff_use_case(
    *,
    handoff_ref: str,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> Handoff:
    now = hooks.now_utc()
    handoff = hooks.find_handoff(db, handoff_ref, current_user)
    if handoff is None:
        raise handoff_not_found()

    sender = get_party(handoff, "sender")
    receiver = get_party(handoff, "receiver")
    is_sender = sender.is_user(current_user.id)
    is_receiver = not is_sender and receiver.is_user(current_user.id)
    if current_user.role == "driver" and not (is_sender or is_receiver):
        raise DomainError(
            code="HANDOFF_NOT_A_PARTY",
            http_status=403,
            message="Not authorized to confirm this handoff",
        )

    _ensure_confirmable(handoff, at=now)

    # Anyone who is not the sender attests the receiving side.
    acting = sender if is_sender else receiver
    if acting.is_confirmed:
        return handoff

    previous_status = handoff.status
    if is_sender:
        set_party(handoff, acting.attest(at=now))
    else:
        set_party(
            handoff,
            acting.attest(
                at=now,
                user_id=current_user.id,
                role=current_user.role,
                name=current_user.name or acting.name,
            ),
        )
        if handoff.session_id is None and current_user.role == "driver":
            active_session = hooks.find_active_session_for_driver(db, current_user.id)
            if active_session is not None:
                handoff.session_id = active_session.id

    apply_and_rederive(handoff, at=now)
    advance_chain_after_completion(db=db, handoff=handoff, hooks=hooks, at=now)

    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_confirmed",
        user=current_user,
        details={
            "side": acting.side,
            "old_status": previous_status,
            "new_status": handoff.status,
        },
    )
    db.commit()
    logger.info("Handoff %s confirmed as %s by %s -> %s", handoff.handoff_code, acting.side, current_user.id, handoff.status)
    return handoff


def _find_by_token(db: Session, token: str, hooks: HandoffUseCaseHooks, *, at) -> Handoff:
    if not token or not token.strip():
        raise _token_invalid()
    handoff = hooks.find_handoff_by_token_hash(db, hash_confirmation_token(token.strip()), at)
    if handoff is None or not is_token_live(
        token_hash=handoff.confirmation_token_hash,
        expires_at=handoff.token_expires_at,
        at=at,
    ):
        raise _token_invalid()
    return handoff


def get_public_handoff_use_case(*, token: str, db: Session, hooks: HandoffUseCaseHooks) -> Handoff:
    """Resolve a live confirmation token to its handoff, for the restricted public summary."""
    return _find_by_token(db, token, hooks, at=hooks.now_utc())


def confirm_handoff_by_token_use_case(*, token: str, db: Session, hooks: HandoffUseCaseHooks) -> Handoff:
    now = hooks.now_utc()
    handoff = _find_by_token(db, token, hooks, at=now)
    _ensure_confirmable(handoff, at=now)

    previous_status = handoff.status
    receiver = get_party(handoff, "receiver")
    set_party(
        handoff,
        receiver.attest(
            at=receiver.confirmed_at or now,
            role=receiver.role or DEFAULT_REMOTE_RECEIVER_ROLE,
        ),
    )
    # Single use: the secret dies with its first successful confirmation.
    clear_confirmation_token(handoff)
    apply_and_rederive(handoff, at=now)
    advance_chain_after_completion(db=db, handoff=handoff, hooks=hooks, at=now)

    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_token_confirmed",
        user=None,
        user_name=handoff.receiver_name or "remote receiver",
        details={"old_status": previous_status, "new_status": handoff.status},
    )
    db.commit()
    logger.info("Handoff %s confirmed by token -> %s", handoff.handoff_code, handoff.status)
    return handoff
