from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from handoff_fakes import (
    FIXED_NOW,
    Clock,
    SessionStub,
    build_world,
    sender_failing,
    sender_ok,
    sender_raising,
)
from medwaste.config import settings
from medwaste.domain_errors import DomainError
from medwaste.models import AuditEvent, NotificationLog
from medwaste.schemas import HandoffContainerIn, HandoffCreate, HandoffReceiverIn
from medwaste.use_cases.handoff_confirmation import confirm_handoff_use_case
from medwaste.use_cases.handoff_lifecycle import (
    create_handoff_use_case,
    expire_overdue_handoffs_use_case,
)


def _facility_payload(world, **overrides) -> HandoffCreate:
    values = dict(
        type="facility_to_driver",
        session_id=world.session.session_code,
        containers=[
            HandoffContainerIn(container_id=world.bins[0].id, declared_weight=5, waste_class="B"),
            HandoffContainerIn(container_id=world.bins[1].id, declared_weight=3, bag_count=2),
        ],
    )
    values.update(overrides)
    return HandoffCreate(**values)


def _incineration_payload(world, **overrides) -> HandoffCreate:
    values = dict(
        type="driver_to_incinerator",
        session_id=str(world.session.id),
        container_ids=[waste_bin.id for waste_bin in world.bins],
        incineration_plant_id=world.plant.id,
    )
    values.update(overrides)
    return HandoffCreate(**values)


def _complete_step1(world, db, hooks):
    created = create_handoff_use_case(
        data=_facility_payload(world),
        current_user=world.supervisor,
        db=db,
        hooks=hooks,
    )
    confirm_handoff_use_case(
        handoff_ref=str(created.handoff.id),
        current_user=world.driver,
        db=db,
        hooks=hooks,
    )
    return created.handoff


def test_create_facility_handoff_attests_sender_and_starts_chain() -> None:
    world = build_world()
    db = SessionStub(world.store)

    result = create_handoff_use_case(
        data=_facility_payload(world),
        current_user=world.supervisor,
        db=db,
        hooks=world.store.hooks(),
    )

    handoff = result.handoff
    assert handoff.handoff_code == "HND-20261018-001"
    assert handoff.status == "confirmed_by_sender"
    assert handoff.sequence == 1
    assert handoff.sender_user_id == world.supervisor.id
    assert handoff.sender_confirmed_at == FIXED_NOW
    assert handoff.receiver_user_id == world.driver.id
    assert handoff.receiver_role == "driver"
    assert handoff.receiver_phone == world.driver.phone_number
    assert handoff.receiver_confirmed_at is None
    assert handoff.company_id == world.company_id
    assert handoff.total_containers == 2
    assert handoff.total_declared_weight == 8.0
    assert [item.bin_code for item in handoff.containers] == ["BIN-A1", "BIN-A2"]
    assert handoff.containers[1].fill_level == 95
    assert handoff.chain_id == "CHAIN-20261018-001"
    assert world.session.handoff_chain_id == "CHAIN-20261018-001"
    assert world.session.handoff_stage == "facility_to_driver"
    assert handoff.confirmation_token_hash is None
    assert result.confirmation_token is None
    assert result.confirmation_url is None
    assert result.notifications == []
    assert db.flush_calls == 1
    assert db.commit_calls == 1

    audits = db.of_type(AuditEvent)
    assert len(audits) == 1
    assert audits[0].action == "handoff_created"
    assert audits[0].entity_name == handoff.handoff_code
    assert audits[0].details["total_declared_weight"] == 8.0


def test_create_accepts_plain_container_ids() -> None:
    world = build_world()
    db = SessionStub(world.store)

    result = create_handoff_use_case(
        data=_facility_payload(world, containers=[], container_ids=[world.bins[0].id]),
        current_user=world.supervisor,
        db=db,
        hooks=world.store.hooks(),
    )

    assert result.handoff.total_containers == 1
    assert result.handoff.total_declared_weight == 0.0


def test_create_without_containers_is_rejected() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError, match="At least one container") as exc:
        create_handoff_use_case(
            data=_facility_payload(world, containers=[]),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "HANDOFF_CONTAINERS_REQUIRED"
    assert db.commit_calls == 0


def test_driver_cannot_create_facility_handoff() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world),
            current_user=world.driver,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 403
    assert exc.value.code == "HANDOFF_CREATE_FORBIDDEN"


def test_supervisor_cannot_create_incineration_handoff() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_incineration_payload(world),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.code == "HANDOFF_CREATE_FORBIDDEN"


def test_incineration_handoff_requires_session() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_incineration_payload(world, session_id=None),
            current_user=world.driver,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "HANDOFF_SESSION_REQUIRED"


def test_unknown_session_is_not_found() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world, session_id="SES-404"),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 404
    assert exc.value.code == "SESSION_NOT_FOUND"


def test_supervisor_of_another_company_cannot_use_session() -> None:
    world = build_world()
    outsider = world.store.add_user(role="supervisor", company_id=uuid4())
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world),
            current_user=outsider,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 403
    assert exc.value.code == "SESSION_ACCESS_DENIED"


def test_driver_cannot_create_on_someone_elses_session() -> None:
    world = build_world()
    other_driver = world.store.add_user(role="driver", company_id=world.company_id)
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_incineration_payload(world),
            current_user=other_driver,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.code == "SESSION_ACCESS_DENIED"


def test_facility_receiver_must_be_a_driver() -> None:
    world = build_world()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(
                world,
                session_id=None,
                receiver=HandoffReceiverIn(user_id=world.supervisor.id),
            ),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "RECEIVER_NOT_DRIVER"


def test_facility_receiver_must_belong_to_company() -> None:
    world = build_world()
    foreign_driver = world.store.add_user(role="driver", company_id=uuid4())
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world, session_id=None, receiver=HandoffReceiverIn(user_id=foreign_driver.id)),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 403
    assert exc.value.code == "RECEIVER_COMPANY_MISMATCH"


def test_facility_handoff_without_session_has_no_chain() -> None:
    world = build_world()
    db = SessionStub(world.store)

    result = create_handoff_use_case(
        data=_facility_payload(world, session_id=None, receiver=HandoffReceiverIn(user_id=world.driver.id, name="Marat")),
        current_user=world.supervisor,
        db=db,
        hooks=world.store.hooks(),
    )

    assert result.handoff.session_id is None
    assert result.handoff.chain_id is None
    assert result.handoff.receiver_name == "Marat"
    assert world.session.handoff_stage == "none"


def test_unknown_container_is_reported_with_ids() -> None:
    world = build_world()
    missing_id = uuid4()
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world, containers=[HandoffContainerIn(container_id=missing_id)]),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 404
    assert exc.value.code == "CONTAINER_NOT_FOUND"
    assert exc.value.details == {"container_ids": [str(missing_id)]}


def test_container_of_another_company_is_rejected() -> None:
    world = build_world()
    foreign_bin = world.store.add_bin(company_id=uuid4(), code="BIN-X")
    db = SessionStub(world.store)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(world, containers=[HandoffContainerIn(container_id=foreign_bin.id)]),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(),
        )

    assert exc.value.http_status == 403
    assert exc.value.code == "CONTAINER_COMPANY_MISMATCH"
    assert world.store.handoffs == []


def test_repeated_container_is_rejected_before_lookup() -> None:
    world = build_world()
    db = SessionStub(world.store)
    bin_id = world.bins[0].id

    def _lookup_should_not_run(*_args):
        raise AssertionError("bins must not be loaded for a duplicated container list")

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_facility_payload(
                world,
                containers=[
                    HandoffContainerIn(container_id=bin_id, declared_weight=5),
                    HandoffContainerIn(container_id=bin_id, declared_weight=5),
                ],
            ),
            current_user=world.supervisor,
            db=db,
            hooks=world.store.hooks(load_waste_bins=_lookup_should_not_run),
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "HANDOFF_DUPLICATE_CONTAINER"
    assert exc.value.details == {"container_ids": [str(bin_id)]}
    assert world.store.handoffs == []
    assert db.commit_calls == 0

def test_second_active_facility_handoff_for_session_is_rejected() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    first = create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=hooks)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=hooks)

    assert exc.value.http_status == 409
    assert exc.value.code == "HANDOFF_STEP_ALREADY_EXISTS"
    assert exc.value.details == {"handoff_id": str(first.handoff.id), "status": "confirmed_by_sender"}
    assert len(world.store.handoffs) == 1


def test_expired_facility_handoff_does_not_block_a_new_one() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    first = create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=hooks)
    first.handoff.status = "expired"

    second = create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=hooks)

    assert second.handoff.chain_id == first.handoff.chain_id
    assert second.handoff.handoff_code == "HND-20261018-002"


def test_concurrent_insert_maps_unique_index_violation_to_conflict() -> None:
    world = build_world()
    violation = IntegrityError(
        "INSERT INTO handoffs ...",
        {},
        Exception('duplicate key value violates unique constraint "uq_handoffs_session_type_active"'),
    )
    db = SessionStub(world.store, flush_error=violation)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=world.store.hooks())

    assert exc.value.http_status == 409
    assert exc.value.code == "HANDOFF_STEP_ALREADY_EXISTS"
    assert db.rollback_calls == 1
    assert db.commit_calls == 0
    assert db.of_type(AuditEvent) == []


def test_other_integrity_errors_map_to_generic_conflict() -> None:
    world = build_world()
    violation = IntegrityError("INSERT INTO handoffs ...", {}, Exception('violates unique constraint "handoffs_handoff_code_key"'))
    db = SessionStub(world.store, flush_error=violation)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=world.store.hooks())

    assert exc.value.code == "HANDOFF_CREATE_CONFLICT"
    assert db.rollback_calls == 1


def test_incineration_handoff_requires_completed_step1() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    create_handoff_use_case(data=_facility_payload(world), current_user=world.supervisor, db=db, hooks=hooks)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    assert exc.value.http_status == 409
    assert exc.value.code == "HANDOFF_STEP1_NOT_COMPLETED"
    assert len(world.store.handoffs) == 1


def test_incineration_handoff_inherits_weights_issues_token_and_notifies() -> None:
    world = build_world()
    db = SessionStub(world.store)
    sms, whatsapp = sender_ok("sms-1"), sender_ok("wa-1")
    hooks = world.store.hooks(senders={"sms": sms, "whatsapp": whatsapp})
    step1 = _complete_step1(world, db, hooks)
    assert step1.status == "completed"
    assert world.session.handoff_stage == "driver_to_incinerator"

    result = create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    handoff = result.handoff
    assert handoff.sequence == 2
    assert handoff.chain_id == step1.chain_id
    assert handoff.status == "confirmed_by_sender"
    assert handoff.sender_user_id == world.driver.id
    assert handoff.receiver_user_id is None
    assert handoff.receiver_role == "incinerator_operator"
    assert handoff.receiver_name == "Plant Operator"
    assert handoff.receiver_phone == "+77015550000"
    assert handoff.total_declared_weight == 8.0
    assert [item.declared_weight for item in handoff.containers] == [5, 3]
    assert world.session.handoff_stage == "driver_to_incinerator"

    assert result.confirmation_token
    assert handoff.confirmation_token_hash and result.confirmation_token not in handoff.confirmation_token_hash
    assert handoff.token_expires_at == FIXED_NOW + timedelta(hours=settings.HANDOFF_TOKEN_TTL_HOURS)
    assert result.confirmation_url == f"{settings.PUBLIC_CONFIRM_BASE_URL.rstrip('/')}/{result.confirmation_token}"

    assert [attempt.channel for attempt in result.notifications] == ["sms", "whatsapp"]
    assert all(attempt.result.success for attempt in result.notifications)
    recipient, message = sms.calls[0]
    assert recipient.phone == "+77015550000"
    assert handoff.handoff_code in message
    assert result.confirmation_token in message


def test_explicit_receiver_phone_overrides_plant_operator() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    _complete_step1(world, db, hooks)

    result = create_handoff_use_case(
        data=_incineration_payload(
            world,
            incineration_plant_id=None,
            receiver=HandoffReceiverIn(phone="+77017770000", name="Shift Lead"),
        ),
        current_user=world.driver,
        db=db,
        hooks=hooks,
    )

    assert result.handoff.receiver_phone == "+77017770000"
    assert result.handoff.receiver_name == "Shift Lead"


def test_incineration_handoff_needs_a_reachable_receiver() -> None:
    world = build_world(operator_phone=None)
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    _complete_step1(world, db, hooks)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    assert exc.value.http_status == 400
    assert exc.value.code == "HANDOFF_RECEIVER_PHONE_MISSING"


def test_unknown_plant_is_not_found() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    _complete_step1(world, db, hooks)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_incineration_payload(world, incineration_plant_id=uuid4()),
            current_user=world.driver,
            db=db,
            hooks=hooks,
        )

    assert exc.value.http_status == 404
    assert exc.value.code == "INCINERATION_PLANT_NOT_FOUND"


def test_unknown_receiver_account_is_not_found() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    _complete_step1(world, db, hooks)
    handoffs_before = len(world.store.handoffs)

    with pytest.raises(DomainError) as exc:
        create_handoff_use_case(
            data=_incineration_payload(world, receiver=HandoffReceiverIn(user_id=uuid4())),
            current_user=world.driver,
            db=db,
            hooks=hooks,
        )

    assert exc.value.http_status == 404
    assert exc.value.code == "RECEIVER_NOT_FOUND"
    assert len(world.store.handoffs) == handoffs_before


def test_known_receiver_account_is_linked_to_the_handoff() -> None:
    world = build_world()
    operator = world.store.add_user(role="incinerator_operator", company_id=None, name="Shift Operator", phone="+77016660000")
    db = SessionStub(world.store)
    hooks = world.store.hooks()
    _complete_step1(world, db, hooks)

    result = create_handoff_use_case(
        data=_incineration_payload(world, receiver=HandoffReceiverIn(user_id=operator.id)),
        current_user=world.driver,
        db=db,
        hooks=hooks,
    )

    assert result.handoff.receiver_user_id == operator.id
    assert result.handoff.receiver_name == "Shift Operator"
    assert result.handoff.receiver_phone == "+77016660000"

def test_failed_sms_does_not_stop_whatsapp_or_roll_back_creation() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks(senders={"sms": sender_failing(), "whatsapp": sender_ok("SM123")})
    _complete_step1(world, db, hooks)
    commits_before = db.commit_calls

    result = create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    logs = [log for log in db.of_type(NotificationLog) if log.handoff_id == result.handoff.id]
    assert len(logs) == 2
    sms_log, whatsapp_log = logs
    assert (sms_log.channel, sms_log.status, sms_log.failure_reason) == ("sms", "failed", "SMS provider not configured")
    assert sms_log.sent_at is None
    assert (whatsapp_log.channel, whatsapp_log.status, whatsapp_log.provider_message_id) == ("whatsapp", "sent", "SM123")
    assert whatsapp_log.sent_at == FIXED_NOW
    assert [log.retry_count for log in logs] == [0, 0]
    assert result.handoff in world.store.handoffs
    assert db.commit_calls == commits_before + 2
    assert db.rollback_calls == 0


def test_raising_channel_is_logged_as_failure() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks(senders={"sms": sender_raising(RuntimeError("gateway down")), "whatsapp": sender_ok()})
    _complete_step1(world, db, hooks)

    result = create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    sms_attempt, whatsapp_attempt = result.notifications
    assert not sms_attempt.result.success
    assert sms_attempt.log.failure_reason == "gateway down"
    assert whatsapp_attempt.result.success


def test_unconfigured_channel_is_logged_as_unsupported() -> None:
    world = build_world()
    db = SessionStub(world.store)
    hooks = world.store.hooks(senders={}, channels=("viber",))
    _complete_step1(world, db, hooks)

    result = create_handoff_use_case(data=_incineration_payload(world), current_user=world.driver, db=db, hooks=hooks)

    assert len(result.notifications) == 1
    assert result.notifications[0].log.failure_reason == "Unsupported channel: viber"


def test_expiry_sweep_persists_expired_status_once() -> None:
    world = build_world()
    db = SessionStub(world.store)
    clock = Clock()
    hooks = world.store.hooks(clock=clock)
    result = create_handoff_use_case(
        data=_facility_payload(world, expires_at=FIXED_NOW + timedelta(hours=2)),
        current_user=world.supervisor,
        db=db,
        hooks=hooks,
    )

    assert expire_overdue_handoffs_use_case(db=db, hooks=hooks) == 0

    clock.advance(hours=3)
    commits_before = db.commit_calls
    assert expire_overdue_handoffs_use_case(db=db, hooks=hooks) == 1
    assert result.handoff.status == "expired"
    assert result.handoff.expired_at == clock.now
    assert db.commit_calls == commits_before + 1

    audit = db.of_type(AuditEvent)[-1]
    assert audit.action == "handoff_expired"
    assert audit.user_name == "system"
    assert audit.details["old_status"] == "confirmed_by_sender"

    assert expire_overdue_handoffs_use_case(db=db, hooks=hooks) == 0
