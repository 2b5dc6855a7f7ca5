from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from handoff_fakes import FIXED_NOW, FakeCustodyStore, SessionStub
from medwaste.domain_errors import DomainError
from medwaste.use_cases.handoff_chain import advance_chain_after_completion, begin_chain


def _session(**overrides):
    values = dict(
        id=uuid4(),
        session_code="SES-001",
        handoff_chain_id=None,
        handoff_stage="none",
        handoff_stage_updated_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_unknown_type_is_rejected() -> None:
    store = FakeCustodyStore()

    with pytest.raises(DomainError) as exc:
        begin_chain(db=SessionStub(store), session=None, handoff_type="driver_to_driver", hooks=store.hooks(), at=FIXED_NOW)

    assert exc.value.http_status == 400
    assert exc.value.code == "HANDOFF_INVALID_TYPE"


def test_first_step_mints_chain_id_and_sets_stage() -> None:
    store = FakeCustodyStore()
    session = _session()

    position = begin_chain(
        db=SessionStub(store),
        session=session,
        handoff_type="facility_to_driver",
        hooks=store.hooks(),
        at=FIXED_NOW,
    )

    assert (position.chain_id, position.sequence) == ("CHAIN-20261018-001", 1)
    assert session.handoff_stage == "facility_to_driver"
    assert session.handoff_stage_updated_at == FIXED_NOW


def test_existing_chain_id_is_reused() -> None:
    store = FakeCustodyStore()
    session = _session(handoff_chain_id="CHAIN-20261017-004")
    hooks = store.hooks(find_completed_handoff=lambda *_args: SimpleNamespace(status="completed"))

    position = begin_chain(
        db=SessionStub(store),
        session=session,
        handoff_type="driver_to_incinerator",
        hooks=hooks,
        at=FIXED_NOW,
    )

    assert position.chain_id == "CHAIN-20261017-004"
    assert position.sequence == 2
    assert store.chain_counter == 0


def test_handoff_without_session_sits_outside_any_chain() -> None:
    store = FakeCustodyStore()

    position = begin_chain(db=SessionStub(store), session=None, handoff_type="facility_to_driver", hooks=store.hooks(), at=FIXED_NOW)

    assert position.chain_id is None
    assert position.sequence == 1


def test_completion_of_last_step_closes_chain() -> None:
    store = FakeCustodyStore()
    session = _session(handoff_stage="driver_to_incinerator")
    hooks = store.hooks(find_session=lambda *_args: session)
    handoff = SimpleNamespace(status="completed", session_id=session.id, sequence=2, handoff_code="HND-1")
    later = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)

    assert advance_chain_after_completion(db=SessionStub(store), handoff=handoff, hooks=hooks, at=later) is session
    assert session.handoff_stage == "completed"
    assert session.handoff_stage_updated_at == later


def test_open_handoff_does_not_move_stage() -> None:
    store = FakeCustodyStore()
    session = _session(handoff_stage="facility_to_driver")
    hooks = store.hooks(find_session=lambda *_args: session)
    handoff = SimpleNamespace(status="confirmed_by_sender", session_id=session.id, sequence=1, handoff_code="HND-1")

    assert advance_chain_after_completion(db=SessionStub(store), handoff=handoff, hooks=hooks, at=FIXED_NOW) is None
    assert session.handoff_stage == "facility_to_driver"
