"""Chain sequencing: where a new handoff sits in its session's custody chain."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, rule_violation
from ..models import CollectionSession, Handoff
from ..services.handoff_rules import (
    HANDOFF_TYPE_FACILITY_TO_DRIVER,
    next_chain_stage_after_completion,
    sequence_for_type,
)
from .handoff_hooks import HandoffUseCaseHooks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainPosition:
    chain_id: str | None
    sequence: int


def _set_stage(session: CollectionSession, stage: str, *, at: datetime) -> None:
    session.handoff_stage = stage
    session.handoff_stage_updated_at = at


def begin_chain(
    *,
    db: Session,
    session: CollectionSession | None,
    handoff_type: str,
    hooks: HandoffUseCaseHooks,
    at: datetime,
) -> ChainPosition:
    """Validate ordering rules and attach the chain id; mutates the session, caller commits."""
    try:
        sequence = sequence_for_type(handoff_type)
    except ValueError as error:
        raise rule_violation("HANDOFF_INVALID_TYPE", error, http_status=400) from error

    if session is None:
        return ChainPosition(chain_id=None, sequence=sequence)

    if sequence == 2 and hooks.find_completed_handoff(db, session.id, HANDOFF_TYPE_FACILITY_TO_DRIVER) is None:
        raise DomainError(
            code="HANDOFF_STEP1_NOT_COMPLETED",
            http_status=409,
            message="Facility-to-driver handoff must be completed before incineration",
        )

    existing = hooks.find_active_handoff(db, session.id, handoff_type)
    if existing is not None:
        raise DomainError(
            code="HANDOFF_STEP_ALREADY_EXISTS",
            http_status=409,
            message=f"A {handoff_type} handoff already exists for this session",
            details={"handoff_id": str(existing.id), "status": existing.status},
        )

    if not session.handoff_chain_id:
        session.handoff_chain_id = hooks.next_chain_code(db, at)
        logger.info("Session %s joined custody chain %s", session.session_code, session.handoff_chain_id)
    _set_stage(session, handoff_type, at=at)
    return ChainPosition(chain_id=session.handoff_chain_id, sequence=sequence)


def advance_chain_after_completion(
    *,
    db: Session,
    handoff: Handoff,
    hooks: HandoffUseCaseHooks,
    at: datetime,
) -> CollectionSession | None:
    """Move the owning session to the next stage once a handoff completes."""
    if handoff.status != "completed" or handoff.session_id is None:
        return None
    stage = next_chain_stage_after_completion(handoff.sequence)
    if stage is None:
        return None
    session = hooks.find_session(db, handoff.session_id)
    if session is None:
        logger.warning("Handoff %s references missing session %s", handoff.handoff_code, handoff.session_id)
        return None
    _set_stage(session, stage, at=at)
    return session
