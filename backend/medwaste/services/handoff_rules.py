"""Handoff invariant helpers: parties, totals, status derivation and transition guards."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID


HANDOFF_TYPE_FACILITY_TO_DRIVER = "facility_to_driver"
HANDOFF_TYPE_DRIVER_TO_INCINERATOR = "driver_to_incinerator"
HANDOFF_TYPES: tuple[str, ...] = (HANDOFF_TYPE_FACILITY_TO_DRIVER, HANDOFF_TYPE_DRIVER_TO_INCINERATOR)

HANDOFF_STATUSES: tuple[str, ...] = (
    "created",
    "pending",
    "confirmed_by_sender",
    "confirmed_by_receiver",
    "completed",
    "disputed",
    "resolving",
    "resolved",
    "expired",
)
TERMINAL_STATUSES: set[str] = {"completed", "resolved", "expired"}
_DISPUTE_STATUSES: set[str] = {"disputed", "resolving", "resolved"}
_NOT_CONFIRMABLE_STATUSES: set[str] = {"disputed", "resolving", "resolved", "expired"}
OPEN_STATUSES: set[str] = {"created", "pending", "confirmed_by_sender", "confirmed_by_receiver"}
DISPUTABLE_STATUSES: set[str] = OPEN_STATUSES

CHAIN_STAGES: tuple[str, ...] = ("none", "facility_to_driver", "driver_to_incinerator", "completed")
_SEQUENCE_BY_TYPE: dict[str, int] = {
    HANDOFF_TYPE_FACILITY_TO_DRIVER: 1,
    HANDOFF_TYPE_DRIVER_TO_INCINERATOR: 2,
}
_STAGE_AFTER_COMPLETION: dict[int, str] = {
    1: "driver_to_incinerator",
    2: "completed",
}

PARTY_SIDES: tuple[str, ...] = ("sender", "receiver")
_PARTY_FIELDS: tuple[str, ...] = ("user_id", "role", "name", "phone", "confirmed_at")
DEFAULT_REMOTE_RECEIVER_ROLE = "incinerator_operator"


@dataclass(frozen=True)
class HandoffParty:
    """One side of a handoff; sender and receiver share this shape."""

    side: str
    user_id: UUID | None = None
    role: str | None = None
    name: str | None = None
    phone: str | None = None
    confirmed_at: datetime | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    def is_user(self, user_id: UUID | None) -> bool:
        return self.user_id is not None and user_id is not None and self.user_id == user_id

    def attest(self, *, at: datetime, **changes: Any) -> "HandoffParty":
        return replace(self, confirmed_at=at, **changes)


@dataclass(frozen=True)
class HandoffTotals:
    containers: int
    declared_weight: float
    confirmed_weight: float


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _check_side(side: str) -> str:
    if side not in PARTY_SIDES:
        raise ValueError(f"Unknown handoff party side: {side}")
    return side


def get_party(handoff: Any, side: str) -> HandoffParty:
    _check_side(side)
    return HandoffParty(
        side=side,
        **{field: getattr(handoff, f"{side}_{field}", None) for field in _PARTY_FIELDS},
    )


def set_party(handoff: Any, party: HandoffParty) -> None:
    side = _check_side(party.side)
    for field in _PARTY_FIELDS:
        setattr(handoff, f"{side}_{field}", getattr(party, field))


def sequence_for_type(handoff_type: str) -> int:
    try:
        return _SEQUENCE_BY_TYPE[handoff_type]
    except KeyError:
        raise ValueError(f"Unknown handoff type: {handoff_type}") from None


def next_chain_stage_after_completion(sequence: int | None) -> str | None:
    if sequence is None:
        return None
    return _STAGE_AFTER_COMPLETION.get(int(sequence))


def format_daily_code(prefix: str, *, at: datetime, number: int) -> str:
    """Human-readable per-day identifier, e.g. HND-20261018-007."""
    return f"{prefix}-{at.strftime('%Y%m%d')}-{number:03d}"


def compute_totals(line_items: Iterable[Any]) -> HandoffTotals:
    items = list(line_items or [])
    return HandoffTotals(
        containers=len(items),
        declared_weight=float(sum(item.declared_weight or 0 for item in items)),
        confirmed_weight=float(sum(item.confirmed_weight or 0 for item in items)),
    )


def recompute_handoff_totals(handoff: Any) -> HandoffTotals:
    totals = compute_totals(handoff.containers)
    handoff.total_containers = totals.containers
    handoff.total_declared_weight = totals.declared_weight
    handoff.total_confirmed_weight = totals.confirmed_weight
    return totals


def derive_confirmation_status(
    *,
    sender_confirmed_at: datetime | None,
    receiver_confirmed_at: datetime | None,
) -> str:
    if sender_confirmed_at is not None and receiver_confirmed_at is not None:
        return "completed"
    if sender_confirmed_at is not None:
        return "confirmed_by_sender"
    if receiver_confirmed_at is not None:
        return "confirmed_by_receiver"
    return "pending"


def derive_handoff_status(handoff: Any) -> str:
    """Status as a function of expiry, the dispute overlay and both attestations."""
    if handoff.expired_at is not None:
        return "expired"
    if handoff.dispute_resolved_at is not None:
        return "resolved"
    if handoff.dispute_raised_at is not None:
        return "resolving" if handoff.status == "resolving" else "disputed"
    return derive_confirmation_status(
        sender_confirmed_at=handoff.sender_confirmed_at,
        receiver_confirmed_at=handoff.receiver_confirmed_at,
    )


def apply_and_rederive(handoff: Any, *, at: datetime | None = None) -> str:
    """Recompute totals and status after any write; the only place status is assigned.

    A handoff that leaves the open statuses loses its confirmation token.
    """
    ts = at or now_utc()
    recompute_handoff_totals(handoff)
    status = derive_handoff_status(handoff)
    handoff.status = status
    if status not in OPEN_STATUSES:
        clear_confirmation_token(handoff)
    if status == "completed" and handoff.completed_at is None:
        handoff.completed_at = ts
    handoff.updated_at = ts
    return status


def is_past_expiry(expires_at: datetime | None, *, at: datetime) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < at


def ensure_confirmable(*, status: str | None, expires_at: datetime | None, at: datetime) -> None:
    if status == "completed":
        raise ValueError("Handoff already confirmed")
    if status in _NOT_CONFIRMABLE_STATUSES:
        raise ValueError(f"Handoff cannot be confirmed in status {status}")
    if is_past_expiry(expires_at, at=at):
        raise ValueError("Handoff has expired")


def ensure_disputable(*, status: str | None) -> None:
    if status == "completed":
        raise ValueError("Cannot dispute completed handoff")
    if status not in DISPUTABLE_STATUSES:
        raise ValueError(f"Handoff cannot be disputed in status {status}")


def ensure_resolvable(*, status: str | None) -> None:
    if status != "disputed":
        raise ValueError("Handoff is not disputed")


def open_dispute(
    handoff: Any,
    *,
    raised_by_id: UUID | None,
    role: str | None,
    reason: str | None,
    description: str | None,
    evidence: Iterable[str] | None,
    at: datetime,
) -> str:
    handoff.dispute_raised_by_id = raised_by_id
    handoff.dispute_role = role
    handoff.dispute_reason = reason
    handoff.dispute_description = description
    handoff.dispute_evidence = list(evidence or [])
    handoff.dispute_raised_at = at
    handoff.dispute_resolved_by_id = None
    handoff.dispute_resolution = None
    handoff.dispute_resolved_at = None
    return apply_and_rederive(handoff, at=at)


def close_dispute(handoff: Any, *, resolved_by_id: UUID | None, resolution: str | None, at: datetime) -> str:
    handoff.dispute_resolved_by_id = resolved_by_id
    handoff.dispute_resolution = resolution
    handoff.dispute_resolved_at = at
    return apply_and_rederive(handoff, at=at)


def clear_confirmation_token(handoff: Any) -> None:
    handoff.confirmation_token_hash = None
    handoff.token_expires_at = None


def mark_expired(handoff: Any, *, at: datetime) -> str:
    handoff.expired_at = at
    return apply_and_rederive(handoff, at=at)


def backfill_declared_weights(line_items: Iterable[Any], previous_items: Iterable[Any]) -> int:
    """Copy declared weights from the previous custody step where the caller gave none."""
    weight_by_container = {
        item.container_id: item.declared_weight
        for item in previous_items or []
        if item.container_id is not None
    }
    filled = 0
    for item in line_items:
        if item.declared_weight is None and weight_by_container.get(item.container_id) is not None:
            item.declared_weight = weight_by_container[item.container_id]
            filled += 1
    return filled


def select_active_operator(operators: list[dict[str, Any]] | None) -> dict[str, Any] | None:
    if not operators:
        return None
    for operator in operators:
        if operator.get("active", True) is not False:
            return operator
    return operators[0]
