"""Security helpers (RBAC, company scoping, and access checks)."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import or_

from .auth import check_permission
from .models import CollectionSession, Handoff, User


def require_permission(user: User, permission: str) -> None:
    """Enforce a role permission server-side."""
    if not check_permission(user, permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: {permission} required",
        )


def is_handoff_party(handoff: Handoff, user: User) -> bool:
    return user.id is not None and user.id in (handoff.sender_user_id, handoff.receiver_user_id)


def can_view_handoff(handoff: Handoff, user: User) -> bool:
    """Visibility policy: admins see all, supervisors their company, drivers only their own handoffs."""
    if check_permission(user, "canViewAll"):
        return True
    if user.role == "supervisor":
        return handoff.company_id == user.company_id
    if user.role == "driver":
        return is_handoff_party(handoff, user)
    return False


def can_view_session(session: CollectionSession, user: User) -> bool:
    if check_permission(user, "canViewAll"):
        return True
    if user.role == "supervisor":
        return session.company_id == user.company_id
    if user.role == "driver":
        return session.driver_id == user.id
    return False


def apply_handoff_visibility_scope(query: Any, user: User, *, parties_only: bool = True) -> Any:
    """Restrict a Handoff query to what the user may see.

    With parties_only=False drivers are not narrowed to their own handoffs, so that
    write paths can answer 403 for a non-party instead of 404.
    """
    if check_permission(user, "canViewAll"):
        return query
    if user.role == "supervisor":
        return query.filter(Handoff.company_id == user.company_id)
    if user.role == "driver":
        if not parties_only:
            return query
        return query.filter(
            or_(Handoff.sender_user_id == user.id, Handoff.receiver_user_id == user.id)
        )
    return query.filter(Handoff.id.is_(None))
