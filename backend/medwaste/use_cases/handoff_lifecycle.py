"""Handoff creation and expiry use-cases."""
from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import check_permission
from ..config import settings
from ..domain_errors import DomainError
from ..models import CollectionSession, Handoff, HandoffContainer, User
from ..schemas import HandoffContainerIn, HandoffCreate
from ..services.handoff_rules import (
    DEFAULT_REMOTE_RECEIVER_ROLE,
    HANDOFF_TYPE_DRIVER_TO_INCINERATOR,
    HANDOFF_TYPE_FACILITY_TO_DRIVER,
    HandoffParty,
    apply_and_rederive,
    backfill_declared_weights,
    mark_expired,
    select_active_operator,
    set_party,
)
from ..services.notification_dispatch import ChannelAttempt, build_confirmation_url
from .handoff_chain import begin_chain
from .handoff_hooks import HandoffUseCaseHooks
from .handoff_notifications import notify_receiver

logger = logging.getLogger(__name__)

ACTIVE_SESSION_INDEX = "uq_handoffs_session_type_active"


@dataclass(frozen=True)
class HandoffCreateResult:
    handoff: Handoff
    confirmation_token: str | None = None
    notifications: list[ChannelAttempt] = field(default_factory=list)

    @property
    def confirmation_url(self) -> str | None:
        if not self.confirmation_token:
            return None
        return build_confirmation_url(self.confirmation_token, base_url=settings.PUBLIC_CONFIRM_BASE_URL)


def _normalize_container_inputs(data: HandoffCreate) -> list[HandoffContainerIn]:
    if data.containers:
        return list(data.containers)
    return [HandoffContainerIn(container_id=container_id) for container_id in data.container_ids]


def _validate_type_requirements(data: HandoffCreate) -> None:
    receiver = data.receiver
    if data.type == HANDOFF_TYPE_DRIVER_TO_INCINERATOR:
        if not data.session_id:
            raise DomainError(
                code="HANDOFF_SESSION_REQUIRED",
                http_status=400,
                message="Session is required for incineration handoff",
            )
        if not data.incineration_plant_id and not (receiver and receiver.phone):
            raise DomainError(
                code="HANDOFF_RECEIVER_REQUIRED",
                http_status=400,
                message="Incineration plant or receiver phone is required",
            )
    elif not data.session_id and not (receiver and receiver.user_id):
        raise DomainError(
            code="HANDOFF_RECEIVER_REQUIRED",
            http_status=400,
            message="Session or receiver driver is required",
        )


def _ensure_creator_allowed(data: HandoffCreate, current_user: User) -> None:
    if data.type == HANDOFF_TYPE_FACILITY_TO_DRIVER:
        if not check_permission(current_user, "canCreateFacilityHandoffs"):
            raise DomainError(
                code="HANDOFF_CREATE_FORBIDDEN",
                http_status=403,
                message="Only supervisors can create facility handoffs",
            )
    elif not check_permission(current_user, "canCreateIncinerationHandoffs"):
        raise DomainError(
            code="HANDOFF_CREATE_FORBIDDEN",
            http_status=403,
            message="Only drivers can create incineration handoffs",
        )


def _resolve_session(
    db: Session,
    data: HandoffCreate,
    current_user: User,
    hooks: HandoffUseCaseHooks,
) -> CollectionSession | None:
    if not data.session_id:
        return None
    session = hooks.find_session(db, data.session_id)
    if session is None:
        raise DomainError(code="SESSION_NOT_FOUND", http_status=404, message="Collection session not found")
    if current_user.role == "driver" and session.driver_id != current_user.id:
        raise DomainError(
            code="SESSION_ACCESS_DENIED",
            http_status=403,
            message="Drivers can only create handoffs for their own session",
        )
    if current_user.role == "supervisor" and session.company_id and session.company_id != current_user.company_id:
        raise DomainError(
            code="SESSION_ACCESS_DENIED",
            http_status=403,
            message="Session belongs to another company",
        )
    return session


def _build_line_items(
    db: Session,
    inputs: list[HandoffContainerIn],
    company_id: Any,
    hooks: HandoffUseCaseHooks,
) -> list[HandoffContainer]:
    requested_ids = [item.container_id for item in inputs]
    duplicates = sorted(str(container_id) for container_id, count in Counter(requested_ids).items() if count > 1)
    if duplicates:
        raise DomainError(
            code="HANDOFF_DUPLICATE_CONTAINER",
            http_status=400,
            message="Each container may appear only once per handoff",
            details={"container_ids": duplicates},
        )
    bins_by_id = {waste_bin.id: waste_bin for waste_bin in hooks.load_waste_bins(db, requested_ids)}
    missing = [str(container_id) for container_id in requested_ids if container_id not in bins_by_id]
    if missing:
        raise DomainError(
            code="CONTAINER_NOT_FOUND",
            http_status=404,
            message="Some containers were not found",
            details={"container_ids": missing},
        )

    line_items: list[HandoffContainer] = []
    for position, item in enumerate(inputs):
        waste_bin = bins_by_id[item.container_id]
        if company_id and waste_bin.company_id and waste_bin.company_id != company_id:
            raise DomainError(
                code="CONTAINER_COMPANY_MISMATCH",
                http_status=403,
                message="Container does not belong to the handoff company",
                details={"container_id": str(item.container_id)},
            )
        line_items.append(
            HandoffContainer(
                id=uuid.uuid4(),
                position=position,
                container_id=waste_bin.id,
                bin_code=waste_bin.bin_code,
                waste_type=waste_bin.waste_type,
                waste_class=item.waste_class,
                fill_level=waste_bin.fullness,
                declared_weight=item.declared_weight,
                confirmed_weight=item.confirmed_weight,
                bag_count=item.bag_count,
                notes=item.notes,
            )
        )
    return line_items


def _resolve_driver_receiver(
    db: Session,
    data: HandoffCreate,
    session: CollectionSession | None,
    company_id: Any,
    hooks: HandoffUseCaseHooks,
) -> tuple[HandoffParty, Any]:
    receiver_in = data.receiver
    driver_id = (receiver_in.user_id if receiver_in else None) or (session.driver_id if session else None)
    if driver_id is None:
        raise DomainError(code="HANDOFF_RECEIVER_REQUIRED", http_status=400, message="Receiver driver is required")

    driver: Any = hooks.get_user(db, driver_id)
    if driver is None:
        raise DomainError(code="RECEIVER_NOT_FOUND", http_status=404, message="Receiver not found")
    if driver.role != "driver":
        raise DomainError(code="RECEIVER_NOT_DRIVER", http_status=400, message="Receiver must be a driver")
    company_id = company_id or driver.company_id
    if driver.company_id and company_id and driver.company_id != company_id:
        raise DomainError(
            code="RECEIVER_COMPANY_MISMATCH",
            http_status=403,
            message="Receiver driver belongs to another company",
        )

    party = HandoffParty(
        side="receiver",
        user_id=driver.id,
        role="driver",
        name=(receiver_in.name if receiver_in else None) or driver.name,
        phone=(receiver_in.phone if receiver_in else None) or driver.phone_number,
    )
    return party, company_id


def _resolve_plant_receiver(db: Session, data: HandoffCreate, hooks: HandoffUseCaseHooks) -> HandoffParty:
    receiver_in = data.receiver
    operator: dict[str, Any] = {}
    if data.incineration_plant_id:
        plant: Any = hooks.get_plant(db, data.incineration_plant_id)
        if plant is None:
            raise DomainError(
                code="INCINERATION_PLANT_NOT_FOUND",
                http_status=404,
                message="Incineration plant not found",
            )
        operator = select_active_operator(plant.operators) or {}

    if receiver_in and receiver_in.user_id:
        account: Any = hooks.get_user(db, receiver_in.user_id)
        if account is None:
            raise DomainError(code="RECEIVER_NOT_FOUND", http_status=404, message="Receiver not found")
        operator = {"name": account.name, "phone": account.phone_number or operator.get("phone")}

    phone = (receiver_in.phone if receiver_in else None) or operator.get("phone")
    if not phone:
        raise DomainError(
            code="HANDOFF_RECEIVER_PHONE_MISSING",
            http_status=400,
            message="Receiver phone is required for incineration confirmation",
        )
    return HandoffParty(
        side="receiver",
        user_id=receiver_in.user_id if receiver_in else None,
        role=(receiver_in.role if receiver_in else None) or DEFAULT_REMOTE_RECEIVER_ROLE,
        name=(receiver_in.name if receiver_in else None) or operator.get("name"),
        phone=phone,
    )


def _is_active_step_violation(exc: IntegrityError) -> bool:
    return ACTIVE_SESSION_INDEX in str(getattr(exc, "orig", exc))


def create_handoff_use_case(
    *,
    data: HandoffCreate,
    current_user: User,
    db: Session,
    hooks: HandoffUseCaseHooks,
) -> HandoffCreateResult:
    now = hooks.now_utc()

    container_inputs = _normalize_container_inputs(data)
    if not container_inputs:
        raise DomainError(
            code="HANDOFF_CONTAINERS_REQUIRED",
            http_status=400,
            message="At least one container is required",
        )
    _ensure_creator_allowed(data, current_user)
    _validate_type_requirements(data)

    session = _resolve_session(db, data, current_user, hooks)
    company_id = (session.company_id if session else None) or current_user.company_id

    if data.type == HANDOFF_TYPE_FACILITY_TO_DRIVER:
        receiver, company_id = _resolve_driver_receiver(db, data, session, company_id, hooks)
    else:
        receiver = _resolve_plant_receiver(db, data, hooks)
    if company_id is None:
        raise DomainError(code="HANDOFF_COMPANY_REQUIRED", http_status=400, message="Company is required")

    line_items = _build_line_items(db, container_inputs, company_id, hooks)
    position = begin_chain(db=db, session=session, handoff_type=data.type, hooks=hooks, at=now)

    if data.type == HANDOFF_TYPE_DRIVER_TO_INCINERATOR and session is not None:
        step1 = hooks.find_completed_handoff(db, session.id, HANDOFF_TYPE_FACILITY_TO_DRIVER)
        if step1 is not None:
            backfill_declared_weights(line_items, step1.containers)

    issued = None
    if data.type == HANDOFF_TYPE_DRIVER_TO_INCINERATOR:
        issued = hooks.issue_token(ttl_hours=settings.HANDOFF_TOKEN_TTL_HOURS, at=now)

    handoff = Handoff(
        id=uuid.uuid4(),
        handoff_code=hooks.next_handoff_code(db, now),
        chain_id=position.chain_id,
        type=data.type,
        sequence=position.sequence,
        session_id=session.id if session else None,
        company_id=company_id,
        facility_id=data.facility_id or (company_id if data.type == HANDOFF_TYPE_FACILITY_TO_DRIVER else None),
        incineration_plant_id=data.incineration_plant_id,
        containers=line_items,
        status="created",
        confirmation_token_hash=issued.token_hash if issued else None,
        token_expires_at=issued.expires_at if issued else None,
        dispute_evidence=[],
        expires_at=data.expires_at,
        created_at=now,
    )
    # Creating the handoff is the sender's attestation.
    set_party(
        handoff,
        HandoffParty(
            side="sender",
            user_id=current_user.id,
            role=current_user.role,
            name=current_user.name,
            phone=current_user.phone_number,
            confirmed_at=now,
        ),
    )
    set_party(handoff, receiver)
    apply_and_rederive(handoff, at=now)

    db.add(handoff)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if _is_active_step_violation(exc):
            raise DomainError(
                code="HANDOFF_STEP_ALREADY_EXISTS",
                http_status=409,
                message=f"A {data.type} handoff already exists for this session",
            ) from exc
        raise DomainError(
            code="HANDOFF_CREATE_CONFLICT",
            http_status=409,
            message="Handoff could not be created due to a concurrent write, retry",
        ) from exc

    hooks.record_audit(
        db,
        handoff=handoff,
        action="handoff_created",
        user=current_user,
        details={
            "type": handoff.type,
            "chain_id": handoff.chain_id,
            "sequence": handoff.sequence,
            "total_containers": handoff.total_containers,
            "total_declared_weight": handoff.total_declared_weight,
        },
    )
    db.commit()
    logger.info("Handoff %s (%s) created by %s", handoff.handoff_code, handoff.type, current_user.id)

    attempts: list[ChannelAttempt] = []
    if data.type == HANDOFF_TYPE_DRIVER_TO_INCINERATOR:
        attempts = notify_receiver(db=db, handoff=handoff, secret=issued.secret, hooks=hooks, at=now)
        db.commit()

    return HandoffCreateResult(
        handoff=handoff,
        confirmation_token=issued.secret if issued else None,
        notifications=attempts,
    )


def expire_overdue_handoffs_use_case(*, db: Session, hooks: HandoffUseCaseHooks) -> int:
    """Persist `expired` for every open handoff whose overall deadline has passed."""
    now = hooks.now_utc()
    expired = 0
    for handoff in hooks.find_overdue_handoffs(db, now):
        previous_status = handoff.status
        mark_expired(handoff, at=now)
        hooks.record_audit(
            db,
            handoff=handoff,
            action="handoff_expired",
            user=None,
            user_name="system",
            details={"old_status": previous_status},
        )
        expired += 1
    if expired:
        db.commit()
        logger.info("Expired %d overdue handoffs", expired)
    return expired
