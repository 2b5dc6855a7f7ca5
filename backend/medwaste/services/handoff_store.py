"""Persistence queries for handoffs, sessions and their collaborators."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..models import (
    AuditEvent,
    CollectionSession,
    Handoff,
    IncinerationPlant,
    NotificationLog,
    User,
    WasteBin,
)
from ..security import apply_handoff_visibility_scope
from .handoff_rules import TERMINAL_STATUSES, format_daily_code

HANDOFF_CODE_PREFIX = "HND"
CHAIN_CODE_PREFIX = "CHAIN"


def _as_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _day_bounds(at: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(at.date(), time.min, tzinfo=at.tzinfo)
    return start, start + timedelta(days=1)


def find_session(db: Session, session_ref: Any) -> CollectionSession | None:
    """Resolve a session by UUID or by its human-readable session code."""
    session_uuid = _as_uuid(session_ref)
    if session_uuid is not None:
        session = db.query(CollectionSession).filter(CollectionSession.id == session_uuid).first()
        if session is not None:
            return session
    return db.query(CollectionSession).filter(CollectionSession.session_code == str(session_ref)).first()


def find_active_session_for_driver(db: Session, driver_id: UUID) -> CollectionSession | None:
    return (
        db.query(CollectionSession)
        .filter(CollectionSession.driver_id == driver_id, CollectionSession.status == "active")
        .order_by(CollectionSession.started_at.desc())
        .first()
    )


def find_active_handoff(db: Session, session_id: UUID, handoff_type: str) -> Handoff | None:
    return (
        db.query(Handoff)
        .filter(Handoff.session_id == session_id, Handoff.type == handoff_type, Handoff.status != "expired")
        .first()
    )


def find_completed_handoff(db: Session, session_id: UUID, handoff_type: str) -> Handoff | None:
    return (
        db.query(Handoff)
        .options(selectinload(Handoff.containers))
        .filter(Handoff.session_id == session_id, Handoff.type == handoff_type, Handoff.status == "completed")
        .order_by(Handoff.completed_at.desc())
        .first()
    )


def load_waste_bins(db: Session, container_ids: Sequence[UUID]) -> list[WasteBin]:
    if not container_ids:
        return []
    return db.query(WasteBin).filter(WasteBin.id.in_(list(container_ids))).all()


def get_user(db: Session, user_id: UUID) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def get_plant(db: Session, plant_id: UUID) -> IncinerationPlant | None:
    return db.query(IncinerationPlant).filter(IncinerationPlant.id == plant_id).first()


def next_handoff_code(db: Session, at: datetime) -> str:
    start, end = _day_bounds(at)
    count = db.query(func.count(Handoff.id)).filter(Handoff.created_at >= start, Handoff.created_at < end).scalar() or 0
    return format_daily_code(HANDOFF_CODE_PREFIX, at=at, number=int(count) + 1)


def next_chain_code(db: Session, at: datetime) -> str:
    prefix = f"{CHAIN_CODE_PREFIX}-{at.strftime('%Y%m%d')}-"
    count = (
        db.query(func.count(func.distinct(CollectionSession.handoff_chain_id)))
        .filter(CollectionSession.handoff_chain_id.like(f"{prefix}%"))
        .scalar()
        or 0
    )
    return format_daily_code(CHAIN_CODE_PREFIX, at=at, number=int(count) + 1)


def find_handoff(db: Session, handoff_ref: Any, user: User, *, parties_only: bool = False) -> Handoff | None:
    """Resolve a handoff by UUID or handoff code within the user's visibility scope."""
    query = apply_handoff_visibility_scope(
        db.query(Handoff).options(selectinload(Handoff.containers)),
        user,
        parties_only=parties_only,
    )
    handoff_uuid = _as_uuid(handoff_ref)
    if handoff_uuid is not None:
        return query.filter(Handoff.id == handoff_uuid).first()
    return query.filter(Handoff.handoff_code == str(handoff_ref)).first()


def find_handoff_by_token_hash(db: Session, token_hash: str, at: datetime) -> Handoff | None:
    return (
        db.query(Handoff)
        .options(selectinload(Handoff.containers))
        .filter(Handoff.confirmation_token_hash == token_hash, Handoff.token_expires_at >= at)
        .first()
    )


def list_handoffs(
    db: Session,
    user: User,
    *,
    status: str | None = None,
    handoff_type: str | None = None,
    session_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Handoff], int]:
    query = apply_handoff_visibility_scope(db.query(Handoff), user)
    if status:
        query = query.filter(Handoff.status == status)
    if handoff_type:
        query = query.filter(Handoff.type == handoff_type)
    if session_id:
        query = query.filter(Handoff.session_id == session_id)

    total = query.order_by(None).count()
    items = (
        query.options(selectinload(Handoff.containers))
        .order_by(Handoff.created_at.desc(), Handoff.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def list_session_handoffs(db: Session, session_id: UUID) -> list[Handoff]:
    return (
        db.query(Handoff)
        .options(selectinload(Handoff.containers))
        .filter(Handoff.session_id == session_id)
        .order_by(Handoff.sequence.asc(), Handoff.created_at.asc())
        .all()
    )


def count_notification_attempts(db: Session, handoff_id: UUID) -> dict[str, int]:
    rows = (
        db.query(NotificationLog.channel, func.count(NotificationLog.id))
        .filter(NotificationLog.handoff_id == handoff_id)
        .group_by(NotificationLog.channel)
        .all()
    )
    return {channel: int(count) for channel, count in rows}


def list_notification_logs(
    db: Session,
    handoff_id: UUID,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[NotificationLog], int]:
    query = db.query(NotificationLog).filter(NotificationLog.handoff_id == handoff_id)
    total = query.count()
    items = (
        query.order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def find_overdue_handoffs(db: Session, at: datetime, *, batch_size: int = 200) -> list[Handoff]:
    """Open handoffs past expires_at, locked so concurrent sweeps skip each other's rows."""
    return (
        db.query(Handoff)
        .filter(
            Handoff.expires_at.isnot(None),
            Handoff.expires_at < at,
            Handoff.status.notin_(sorted(TERMINAL_STATUSES | {"disputed", "resolving"})),
        )
        .order_by(Handoff.expires_at.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
        .all()
    )


def record_handoff_audit(
    db: Session,
    *,
    handoff: Handoff,
    action: str,
    user: User | None,
    user_name: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    audit = AuditEvent(
        company_id=handoff.company_id,
        action=action,
        entity_type="handoff",
        entity_id=handoff.id,
        entity_name=handoff.handoff_code,
        user_id=user.id if user is not None else None,
        user_name=user_name or (user.name if user is not None else None),
        details={"status": handoff.status, **(details or {})},
    )
    db.add(audit)
    return audit
