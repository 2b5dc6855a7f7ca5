"""Read-side handoff use-cases: listing, lookup, chain view and notification audit."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..domain_errors import DomainError
from ..models import CollectionSession, Handoff, NotificationLog, User
from ..security import can_view_handoff, can_view_session
from .handoff_hooks import HandoffUseCaseHooks, handoff_not_found


@dataclass(frozen=True)
class HandoffChainView:
    session: CollectionSession
    handoffs: list[Handoff]

    @property
    def stage(self) -> str:
        return self.session.handoff_stage or "none"


def _resolve_visible_session(db: Session, session_ref: str, current_user: User, hooks: HandoffUseCaseHooks) -> CollectionSession:
    session = hooks.find_session(db, session_ref)
    if session is None:
        raise DomainError(code="SESSION_NOT_FOUND", http_status=404, message="Collection session not found")
    if not can_view_session(session, current_user):
        raise DomainError(code="SESSION_ACCESS_DENIED", http_status=403, message="Access denied")
    return session


def list_handoffs_use_case(
    *,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
    status: str | None = None,
    handoff_type: str | None = None,
    session_ref: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Handoff], int]:
    session_id = None
    if session_ref:
        session = hooks.find_session(db, session_ref)
        if session is None:
            return [], 0
        session_id = session.id
    return hooks.list_handoffs(
        db,
        current_user,
        status=status,
        handoff_type=handoff_type,
        session_id=session_id,
        limit=limit,
        offset=offset,
    )


def get_handoff_use_case(
    *,
    handoff_ref: str,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> Handoff:
    handoff = hooks.find_handoff(db, handoff_ref, current_user, parties_only=True)
    if handoff is None or not can_view_handoff(handoff, current_user):
        raise handoff_not_found()
    return handoff


def get_handoff_chain_use_case(
    *,
    session_ref: str,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> HandoffChainView:
    session = _resolve_visible_session(db, session_ref, current_user, hooks)
    handoffs = sorted(
        hooks.list_session_handoffs(db, session.id),
        key=lambda handoff: (handoff.sequence or 0, handoff.created_at),
    )
    return HandoffChainView(session=session, handoffs=handoffs)


def list_notification_logs_use_case(
    *,
    handoff_ref: str,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[NotificationLog], int]:
    handoff = hooks.find_handoff(db, handoff_ref, current_user)
    if handoff is None:
        raise handoff_not_found()
    return hooks.list_notification_logs(db, handoff.id, limit=limit, offset=offset)
