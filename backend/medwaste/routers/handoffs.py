"""Custody handoff endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..config import settings
from ..database import get_db
from ..models import User
from ..rate_limit import enforce_public_token_rate_limit
from ..schemas import (
    HandoffChainOut,
    HandoffCreate,
    HandoffCreateResponse,
    HandoffDisputeRequest,
    HandoffOut,
    HandoffPublicOut,
    HandoffResendResponse,
    HandoffResolveRequest,
    PaginatedHandoffs,
    PaginatedNotificationLogs,
    PaginationResponse,
)
from ..services.handoff_response_builder import (
    attempts_to_out,
    handoff_to_out,
    handoff_to_public_out,
    notification_logs_to_out,
)
from ..use_cases.handoff_confirmation import (
    confirm_handoff_by_token_use_case,
    confirm_handoff_use_case,
    get_public_handoff_use_case,
)
from ..use_cases.handoff_disputes import dispute_handoff_use_case, resolve_dispute_use_case
from ..use_cases.handoff_hooks import HANDOFF_USE_CASE_HOOKS
from ..use_cases.handoff_lifecycle import create_handoff_use_case
from ..use_cases.handoff_notifications import resend_notification_use_case
from ..use_cases.handoff_queries import (
    get_handoff_chain_use_case,
    get_handoff_use_case,
    list_handoffs_use_case,
    list_notification_logs_use_case,
)

router = APIRouter(prefix="/handoffs", tags=["handoffs"])


def _no_store(response: Response) -> None:
    # Responses carrying or keyed by confirmation secrets must not be cached.
    response.headers["Cache-Control"] = "no-store"


@router.post(
    "",
    response_model=HandoffCreateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(PermissionChecker("canCreateHandoffs"))],
)
def create_handoff(
    data: HandoffCreate,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a custody handoff; step 2 also notifies the receiver."""
    result = create_handoff_use_case(
        data=data,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    _no_store(response)
    return HandoffCreateResponse(
        handoff=handoff_to_out(result.handoff),
        confirmation_token=result.confirmation_token,
        confirmation_url=result.confirmation_url,
        notifications=attempts_to_out(result.notifications),
    )


@router.get(
    "",
    response_model=PaginatedHandoffs,
    dependencies=[Depends(PermissionChecker("canViewHandoffs"))],
)
def list_handoffs(
    status_filter: Optional[str] = Query(None, alias="status"),
    handoff_type: Optional[str] = Query(None, alias="type"),
    session_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = list_handoffs_use_case(
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
        status=status_filter,
        handoff_type=handoff_type,
        session_ref=session_id,
        limit=limit,
        offset=offset,
    )
    return PaginatedHandoffs(
        data=[handoff_to_out(handoff) for handoff in items],
        pagination=PaginationResponse(total=total, limit=limit, offset=offset),
    )


@router.get(
    "/public/{token}",
    response_model=HandoffPublicOut,
    dependencies=[Depends(enforce_public_token_rate_limit)],
)
def get_public_handoff(token: str, response: Response, db: Session = Depends(get_db)):
    """Restricted summary for the remote confirmation page."""
    handoff = get_public_handoff_use_case(token=token, db=db, hooks=HANDOFF_USE_CASE_HOOKS)
    _no_store(response)
    return handoff_to_public_out(handoff)


@router.post(
    "/confirm/{token}",
    response_model=HandoffPublicOut,
    dependencies=[Depends(enforce_public_token_rate_limit)],
)
def confirm_handoff_by_token(token: str, response: Response, db: Session = Depends(get_db)):
    """Remote receiver confirmation via the one-time link."""
    handoff = confirm_handoff_by_token_use_case(token=token, db=db, hooks=HANDOFF_USE_CASE_HOOKS)
    _no_store(response)
    return handoff_to_public_out(handoff)


@router.get(
    "/chain/{session_ref}",
    response_model=HandoffChainOut,
    dependencies=[Depends(PermissionChecker("canViewHandoffs"))],
)
def get_handoff_chain(
    session_ref: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    view = get_handoff_chain_use_case(
        session_ref=session_ref,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return HandoffChainOut(
        session_id=view.session.id,
        session_code=view.session.session_code,
        chain_id=view.session.handoff_chain_id,
        stage=view.stage,
        stage_updated_at=view.session.handoff_stage_updated_at,
        handoffs=[handoff_to_out(handoff) for handoff in view.handoffs],
    )


@router.get(
    "/{handoff_ref}",
    response_model=HandoffOut,
    dependencies=[Depends(PermissionChecker("canViewHandoffs"))],
)
def get_handoff(
    handoff_ref: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    handoff = get_handoff_use_case(
        handoff_ref=handoff_ref,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return handoff_to_out(handoff)


@router.patch(
    "/{handoff_ref}/confirm",
    response_model=HandoffOut,
    dependencies=[Depends(PermissionChecker("canConfirmHandoffs"))],
)
def confirm_handoff(
    handoff_ref: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    handoff = confirm_handoff_use_case(
        handoff_ref=handoff_ref,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return handoff_to_out(handoff)


@router.patch(
    "/{handoff_ref}/dispute",
    response_model=HandoffOut,
    dependencies=[Depends(PermissionChecker("canDisputeHandoffs"))],
)
def dispute_handoff(
    handoff_ref: str,
    data: HandoffDisputeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    handoff = dispute_handoff_use_case(
        handoff_ref=handoff_ref,
        data=data,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return handoff_to_out(handoff)


@router.patch(
    "/{handoff_ref}/resolve",
    response_model=HandoffOut,
    dependencies=[Depends(PermissionChecker("canResolveDisputes"))],
)
def resolve_dispute(
    handoff_ref: str,
    data: HandoffResolveRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    handoff = resolve_dispute_use_case(
        handoff_ref=handoff_ref,
        data=data,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return handoff_to_out(handoff)


@router.post(
    "/{handoff_ref}/resend-notification",
    response_model=HandoffResendResponse,
    dependencies=[Depends(PermissionChecker("canResendNotifications"))],
)
def resend_notification(
    handoff_ref: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = resend_notification_use_case(
        handoff_ref=handoff_ref,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
    )
    return HandoffResendResponse(
        handoff=handoff_to_out(result.handoff),
        notifications=attempts_to_out(result.notifications),
    )


@router.get(
    "/{handoff_ref}/notifications",
    response_model=PaginatedNotificationLogs,
    dependencies=[Depends(PermissionChecker("canViewNotificationLogs"))],
)
def list_notification_logs(
    handoff_ref: str,
    limit: int = Query(50, ge=1, le=settings.NOTIFICATION_LOG_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    logs, total = list_notification_logs_use_case(
        handoff_ref=handoff_ref,
        current_user=current_user,
        db=db,
        hooks=HANDOFF_USE_CASE_HOOKS,
        limit=limit,
        offset=offset,
    )
    return PaginatedNotificationLogs(
        data=notification_logs_to_out(logs),
        pagination=PaginationResponse(total=total, limit=limit, offset=offset),
    )
