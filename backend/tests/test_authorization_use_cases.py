from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from factories import make_health_check, make_item, make_user
from vhc.domain_errors import Conflict, PreconditionFailed
from vhc.models import AuditEvent, HealthCheck, HealthCheckStatusHistory, RepairItem, RepairItemAuthorization
from vhc.use_cases.authorizations import (
    bulk_record_decisions,
    record_customer_decision,
    record_decision,
    reset_decision,
)


def _setup(db, *, status="sent", item_count=1, **hc_fields):
    org_id = uuid4()
    user = make_user(org_id=org_id)
    hc = db.seed(HealthCheck, make_health_check(org_id=org_id, status=status, **hc_fields))
    items = [
        make_item(health_check_id=hc.id, org_id=org_id, labour=Decimal("50"), sort_order=n)
        for n in range(item_count)
    ]
    db.seed(RepairItem, *items)
    return user, hc, items


def test_changing_decision_keeps_a_single_row(db) -> None:
    user, hc, (item,) = _setup(db)

    record_decision(db=db, repair_item_id=item.id, decision="approved", current_user=user)
    auth = record_decision(db=db, repair_item_id=item.id, decision="declined", current_user=user, declined_reason="Too dear")

    rows = db.rows[RepairItemAuthorization]
    assert rows == [auth]
    assert auth.decision == "declined"
    assert auth.source == "advisor"
    assert auth.declined_reason == "Too dear"
    assert hc.status == "declined"
    assert db.lock_calls == 2
    assert db.commit_calls == 2
    events = [e.event_type for e in db.added_of(AuditEvent)]
    assert events.count("outcome_authorised") == 1
    assert events.count("outcome_declined") == 1


def test_partial_decisions_move_to_partial_response(db) -> None:
    user, hc, items = _setup(db, item_count=3)

    record_decision(db=db, repair_item_id=items[0].id, decision="approved", current_user=user)

    assert hc.status == "partial_response"
    history = db.added_of(HealthCheckStatusHistory)
    assert [(h.from_status, h.to_status) for h in history] == [("sent", "partial_response")]


def test_bulk_decisions_authorise_the_health_check(db) -> None:
    user, hc, items = _setup(db, item_count=3)

    auths = bulk_record_decisions(
        db=db,
        health_check_id=hc.id,
        repair_item_ids=[i.id for i in items],
        decision="approved",
        current_user=user,
    )

    assert len(auths) == 3
    assert hc.status == "authorized"
    assert db.commit_calls == 1


def test_decision_on_deleted_item_is_a_conflict(db) -> None:
    user, _hc, (item,) = _setup(db)
    item.deleted_at = datetime.now(timezone.utc)

    with pytest.raises(Conflict) as exc:
        record_decision(db=db, repair_item_id=item.id, decision="approved", current_user=user)

    assert exc.value.code == "REPAIR_ITEM_DELETED"
    assert db.rows[RepairItemAuthorization] == []
    assert db.commit_calls == 0


def test_invalid_decision_value_is_rejected(db) -> None:
    user, _hc, (item,) = _setup(db)

    with pytest.raises(PreconditionFailed) as exc:
        record_decision(db=db, repair_item_id=item.id, decision="maybe", current_user=user)

    assert exc.value.code == "INVALID_DECISION"


def test_closed_health_check_locks_decisions(db) -> None:
    user, _hc, (item,) = _setup(db, status="closed")

    with pytest.raises(PreconditionFailed) as exc:
        record_decision(db=db, repair_item_id=item.id, decision="approved", current_user=user)

    assert exc.value.code == "HEALTH_CHECK_LOCKED"
    assert exc.value.http_status == 409


def test_reset_returns_item_to_pending(db) -> None:
    user, hc, items = _setup(db, item_count=2)
    record_decision(db=db, repair_item_id=items[0].id, decision="approved", current_user=user)
    record_decision(db=db, repair_item_id=items[1].id, decision="approved", current_user=user)
    assert hc.status == "authorized"

    reset_decision(db=db, repair_item_id=items[1].id, current_user=user)

    assert [a.repair_item_id for a in db.rows[RepairItemAuthorization]] == [items[0].id]
    assert hc.status == "partial_response"
    assert db.added_of(AuditEvent)[-2].event_type == "outcome_reset"


def test_reset_is_idempotent_when_pending(db) -> None:
    user, _hc, (item,) = _setup(db)

    reset_decision(db=db, repair_item_id=item.id, current_user=user)

    assert db.commit_calls == 0
    assert db.deleted == []


def test_customer_decision_through_public_link(db) -> None:
    _user, hc, (item,) = _setup(
        db,
        public_token="tok-123",
        token_expires_at=datetime.now(timezone.utc) + timedelta(days=3),
    )

    auth = record_customer_decision(db=db, token="tok-123", repair_item_id=item.id, decision="approved", notes="Go ahead")

    assert auth.source == "customer"
    assert auth.decided_by_id is None
    assert auth.customer_notes == "Go ahead"
    assert hc.status == "authorized"
    decision_event = db.added_of(AuditEvent)[0]
    assert decision_event.user_name == "Customer"


def test_customer_decision_on_expired_link_is_gone(db) -> None:
    _user, _hc, (item,) = _setup(
        db,
        public_token="tok-old",
        token_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )

    with pytest.raises(PreconditionFailed) as exc:
        record_customer_decision(db=db, token="tok-old", repair_item_id=item.id, decision="approved")

    assert exc.value.code == "PUBLIC_LINK_EXPIRED"
    assert exc.value.http_status == 410


def test_customer_cannot_decide_group_children(db) -> None:
    user, hc, _items = _setup(db, public_token="tok-child", token_expires_at=None)
    child = make_item(health_check_id=hc.id, org_id=user.org_id, labour=Decimal("10"))
    make_item(health_check_id=hc.id, org_id=user.org_id, is_group=True, children=[child])
    db.seed(RepairItem, child)

    with pytest.raises(PreconditionFailed) as exc:
        record_customer_decision(db=db, token="tok-child", repair_item_id=child.id, decision="approved")

    assert exc.value.code == "REPAIR_ITEM_NOT_DECIDABLE"


def test_completed_health_check_locks_decisions(db) -> None:
    user, _hc, (item,) = _setup(db, status="completed")

    with pytest.raises(PreconditionFailed) as exc:
        record_decision(db=db, repair_item_id=item.id, decision="declined", current_user=user)

    assert exc.value.code == "HEALTH_CHECK_LOCKED"
    assert exc.value.http_status == 409
    assert db.rows[RepairItemAuthorization] == []


def test_withdrawing_the_only_decision_returns_to_sent(db) -> None:
    user, hc, (item,) = _setup(db)
    record_decision(db=db, repair_item_id=item.id, decision="approved", current_user=user)
    assert hc.status == "authorized"

    reset_decision(db=db, repair_item_id=item.id, current_user=user)

    assert db.rows[RepairItemAuthorization] == []
    assert hc.status == "sent"
    history = db.added_of(HealthCheckStatusHistory)
    assert [(h.from_status, h.to_status) for h in history][-1] == ("authorized", "sent")


def test_withdrawing_after_the_customer_opened_returns_to_opened(db) -> None:
    user, hc, (item,) = _setup(db, status="opened", first_opened_at=datetime(2026, 3, 1, tzinfo=timezone.utc))
    record_decision(db=db, repair_item_id=item.id, decision="declined", current_user=user)
    assert hc.status == "declined"

    reset_decision(db=db, repair_item_id=item.id, current_user=user)

    assert hc.status == "opened"


def test_customer_approval_can_choose_an_option(db) -> None:
    _user, hc, (item,) = _setup(db, public_token="tok-opt", token_expires_at=None)
    pattern = SimpleNamespace(
        id=uuid4(),
        name="Pattern pads",
        labour_total=Decimal("30"),
        parts_total=Decimal("10"),
        vat_amount=Decimal("8.00"),
    )
    item.options.append(pattern)

    record_customer_decision(
        db=db,
        token="tok-opt",
        repair_item_id=item.id,
        decision="approved",
        selected_option_id=pattern.id,
    )

    assert item.selected_option is pattern
    assert item.selected_option_id == pattern.id
    assert hc.status == "authorized"
    assert hc.total_amount == Decimal("40.00")
    assert hc.total_vat == Decimal("8.00")
    assert hc.total_inc_vat == Decimal("48.00")
    selected = [e for e in db.added_of(AuditEvent) if e.event_type == "repair_option_selected"]
    assert selected[0].user_name == "Customer"


def test_option_can_only_be_chosen_when_approving(db) -> None:
    user, _hc, (item,) = _setup(db)
    option = SimpleNamespace(id=uuid4(), name="OEM", labour_total=Decimal("60"), parts_total=0, vat_amount=0)
    item.options.append(option)

    with pytest.raises(PreconditionFailed) as exc:
        record_decision(
            db=db,
            repair_item_id=item.id,
            decision="declined",
            selected_option_id=option.id,
            current_user=user,
        )

    assert exc.value.code == "OPTION_REQUIRES_APPROVAL"
    assert item.selected_option is None
    assert db.commit_calls == 0
