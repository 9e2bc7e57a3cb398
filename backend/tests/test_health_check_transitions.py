from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from factories import make_decision, make_health_check, make_item, make_user
from vhc.domain_errors import Forbidden, PreconditionFailed
from vhc.models import (
    AuditEvent,
    CheckResult,
    HealthCheck,
    HealthCheckStatusHistory,
    MriScanResult,
    RepairItem,
    RepairItemAuthorization,
)
from vhc.services.notifications import DeliveryResult
from vhc.use_cases.health_check_transitions import (
    WorkflowHooks,
    cancel_health_check,
    close_health_check,
    complete_checkin,
    complete_inspection,
    complete_work,
    evaluate_close_readiness,
    expire_health_check,
    mark_ready,
    publish_health_check,
    record_opened,
    skip_checkin,
    start_review,
)


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeDispatcher:
    def __init__(self, *, fail_sms=False, on_send=None):
        self.sent = []
        self.fail_sms = fail_sms
        self.on_send = on_send

    def send_email(self, to, payload):
        self.sent.append(("email", to, payload))
        if self.on_send:
            self.on_send()
        return DeliveryResult(channel="email", recipient=to, ok=True)

    def send_sms(self, to, payload):
        self.sent.append(("sms", to, payload))
        if self.fail_sms:
            raise ConnectionError("SMS gateway unreachable")
        return DeliveryResult(channel="sms", recipient=to, ok=True)


class Clock:
    def __init__(self, at):
        self.at = at

    def __call__(self):
        return self.at


def _hooks(dispatcher, clock=None):
    tokens = iter(f"token-{n}" for n in range(1, 100))
    issued = []

    def issue_token(health_check_id, days):
        token = next(tokens)
        issued.append((health_check_id, days, token))
        return token

    hooks = WorkflowHooks(
        dispatcher_factory=lambda _db, _hc: dispatcher,
        issue_token=issue_token,
        now_utc=clock or Clock(NOW),
    )
    return hooks, issued


def _customer(**fields):
    values = dict(id=uuid4(), first_name="Jo", last_name="Bloggs", email="jo@example.com", mobile="07700900123")
    values.update(fields)
    return SimpleNamespace(**values)


def _setup(db, *, status="ready_to_send", role="service_advisor", customer=None, **fields):
    org_id = uuid4()
    user = make_user(org_id=org_id, role=role)
    hc = db.seed(
        HealthCheck,
        make_health_check(org_id=org_id, status=status, customer=customer or _customer(), **fields),
    )
    return user, hc


def _events(db):
    return [e.event_type for e in db.added_of(AuditEvent)]


# --- publish ---------------------------------------------------------------------


def test_publish_without_channel_is_rejected_and_status_unchanged(db) -> None:
    user, hc = _setup(db)
    hooks, issued = _hooks(FakeDispatcher())

    with pytest.raises(PreconditionFailed) as exc:
        publish_health_check(db=db, health_check_id=hc.id, send_email=False, send_sms=False, current_user=user, hooks=hooks)

    assert exc.value.code == "NO_DELIVERY_CHANNEL"
    assert hc.status == "ready_to_send"
    assert hc.public_token is None
    assert issued == []
    assert db.commit_calls == 0


def test_publish_missing_email_is_rejected(db) -> None:
    user, hc = _setup(db, customer=_customer(email=None))
    hooks, _ = _hooks(FakeDispatcher())

    with pytest.raises(PreconditionFailed) as exc:
        publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)

    assert exc.value.code == "CUSTOMER_EMAIL_MISSING"


def test_publish_rejects_unknown_expiry(db) -> None:
    user, hc = _setup(db)
    hooks, _ = _hooks(FakeDispatcher())

    with pytest.raises(PreconditionFailed) as exc:
        publish_health_check(
            db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, expiry_days=5, hooks=hooks,
        )

    assert exc.value.code == "INVALID_LINK_EXPIRY"


def test_publish_sends_and_commits_before_dispatch(db) -> None:
    user, hc = _setup(db)
    sent_after_commits = []
    dispatcher = FakeDispatcher(on_send=lambda: sent_after_commits.append(db.commit_calls))
    hooks, _ = _hooks(dispatcher)

    outcome = publish_health_check(
        db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, expiry_days=14, hooks=hooks,
    )

    assert hc.status == "sent"
    assert outcome.token == "token-1"
    assert outcome.expires_at == NOW + timedelta(days=14)
    assert hc.public_token == "token-1"
    assert hc.token_expiry_days == 14
    assert hc.sent_at == NOW
    assert not outcome.degraded
    assert sent_after_commits == [1]
    assert dispatcher.sent[0][0:2] == ("email", "jo@example.com")
    assert dispatcher.sent[0][2]["link"].endswith("/view/token-1")
    assert db.commit_calls == 2
    assert db.lock_calls == 1
    assert "sent_to_customer" in _events(db)


def test_resend_issues_fresh_link_and_expiry(db) -> None:
    user, hc = _setup(db)
    clock = Clock(NOW)
    hooks, _ = _hooks(FakeDispatcher(), clock)
    publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)

    clock.at = NOW + timedelta(days=2)
    outcome = publish_health_check(
        db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, expiry_days=3, hooks=hooks,
    )

    assert not outcome.deduplicated
    assert outcome.token == "token-2"
    assert hc.token_expires_at == NOW + timedelta(days=5)
    history = [(h.from_status, h.to_status) for h in db.added_of(HealthCheckStatusHistory)]
    assert history == [("ready_to_send", "sent"), ("sent", "sent")]


def test_repeated_publish_inside_window_is_deduplicated(db) -> None:
    user, hc = _setup(db)
    dispatcher = FakeDispatcher()
    hooks, issued = _hooks(dispatcher)

    first = publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)
    second = publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)

    assert second.deduplicated
    assert second.token == first.token
    assert len(issued) == 1
    assert len(dispatcher.sent) == 1
    assert _events(db).count("sent_to_customer") == 1


def test_delivery_failure_is_degraded_not_rolled_back(db) -> None:
    user, hc = _setup(db)
    hooks, _ = _hooks(FakeDispatcher(fail_sms=True))

    outcome = publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=True, current_user=user, hooks=hooks)

    assert hc.status == "sent"
    assert outcome.degraded
    assert [(d.channel, d.ok) for d in outcome.deliveries] == [("email", True), ("sms", False)]
    assert "SMS gateway unreachable" in outcome.deliveries[1].error
    assert "notification_failed" in _events(db)
    assert db.rollback_calls == 0


def test_queue_commit_failure_marks_deliveries_failed(db) -> None:
    user, hc = _setup(db)

    def break_commits():
        db.fail_commit_with = OperationalError("INSERT", {}, Exception("connection lost"))

    hooks, _ = _hooks(FakeDispatcher(on_send=break_commits))

    outcome = publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)

    assert hc.status == "sent"
    assert outcome.degraded
    assert outcome.deliveries[0].error == "QUEUE_COMMIT_FAILED"
    assert db.rollback_calls == 1


def test_publish_from_wrong_status_is_rejected(db) -> None:
    user, hc = _setup(db, status="awaiting_pricing")
    hooks, _ = _hooks(FakeDispatcher())

    with pytest.raises(PreconditionFailed) as exc:
        publish_health_check(db=db, health_check_id=hc.id, send_email=True, send_sms=False, current_user=user, hooks=hooks)

    assert exc.value.code == "INVALID_STATUS_FOR_ACTION"
    assert exc.value.http_status == 409


# --- review and pricing ----------------------------------------------------------


def test_start_review_requires_completed_inspection(db) -> None:
    user, hc = _setup(db, status="tech_completed")

    with pytest.raises(PreconditionFailed) as exc:
        start_review(db=db, health_check_id=hc.id, current_user=user)

    assert exc.value.code == "TECHNICIAN_NOT_COMPLETE"
    assert hc.status == "tech_completed"


def test_start_review_moves_to_pricing(db) -> None:
    user, hc = _setup(db, status="tech_completed", tech_completed_at=NOW)

    start_review(db=db, health_check_id=hc.id, current_user=user)

    assert hc.status == "awaiting_pricing"


def test_mark_ready_requires_some_pricing(db) -> None:
    user, hc = _setup(db, status="awaiting_pricing")
    db.seed(RepairItem, make_item(health_check_id=hc.id, org_id=hc.org_id))

    with pytest.raises(PreconditionFailed) as exc:
        mark_ready(db=db, health_check_id=hc.id, current_user=user)

    assert exc.value.code == "PRICING_REQUIRED"


def test_mark_ready_allows_partially_priced_health_check(db) -> None:
    user, hc = _setup(db, status="awaiting_parts")
    db.seed(
        RepairItem,
        make_item(health_check_id=hc.id, org_id=hc.org_id),
        make_item(health_check_id=hc.id, org_id=hc.org_id, parts=Decimal("12.50")),
    )

    mark_ready(db=db, health_check_id=hc.id, current_user=user)

    assert hc.status == "ready_to_send"


# --- check-in and inspection ------------------------------------------------------


def test_skip_checkin_requires_admin(db) -> None:
    user, hc = _setup(db, status="awaiting_checkin")

    with pytest.raises(Forbidden) as exc:
        skip_checkin(db=db, health_check_id=hc.id, reason="Customer in a hurry", current_user=user)

    assert exc.value.code == "PERMISSION_DENIED"
    assert hc.status == "awaiting_checkin"


def test_admin_skip_checkin_bypasses_mri(db) -> None:
    admin, hc = _setup(db, status="awaiting_checkin", role="org_admin")

    skip_checkin(db=db, health_check_id=hc.id, reason="Customer in a hurry", current_user=admin)

    assert hc.status == "created"
    assert hc.mri_bypassed is True
    assert hc.checkin_skipped_reason == "Customer in a hurry"
    assert "checkin_skipped" in _events(db)


def test_skip_checkin_requires_reason(db) -> None:
    admin, hc = _setup(db, status="awaiting_checkin", role="site_admin")

    with pytest.raises(PreconditionFailed) as exc:
        skip_checkin(db=db, health_check_id=hc.id, reason="  ", current_user=admin)

    assert exc.value.code == "CHECKIN_SKIP_REASON_REQUIRED"


def test_complete_checkin_generates_mri_repair_items(db) -> None:
    user, hc = _setup(db, status="awaiting_checkin")
    red = SimpleNamespace(
        id=uuid4(), health_check_id=hc.id, item_name="Timing belt", rag_status="red",
        sales_description="Replace timing belt kit", description=None, notes=None,
    )
    green = SimpleNamespace(
        id=uuid4(), health_check_id=hc.id, item_name="Cabin filter", rag_status="green",
        sales_description=None, description=None, notes=None,
    )
    db.seed(MriScanResult, red, green)
    hooks, _ = _hooks(FakeDispatcher())

    outcome = complete_checkin(
        db=db, health_check_id=hc.id, checkin_data={"mileage": 42000}, current_user=user, hooks=hooks,
    )

    assert hc.status == "created"
    assert hc.checked_in_at == NOW
    assert [item.name for item in outcome.generated_items] == ["Timing belt"]
    assert outcome.generated_items[0].mri_result_id == red.id
    assert outcome.generated_items[0].description == "Replace timing belt kit"
    assert db.commit_calls == 1


def test_complete_checkin_requires_data(db) -> None:
    user, hc = _setup(db, status="awaiting_checkin")

    with pytest.raises(PreconditionFailed) as exc:
        complete_checkin(db=db, health_check_id=hc.id, checkin_data={}, current_user=user)

    assert exc.value.code == "CHECKIN_DATA_REQUIRED"


def test_complete_inspection_counts_results_and_generates_items(db) -> None:
    user, hc = _setup(db, status="in_progress", tech_started_at=NOW)
    db.seed(
        CheckResult,
        *[
            SimpleNamespace(
                id=uuid4(), health_check_id=hc.id, item_name=name, rag_status=rag,
                vehicle_location_name=None, notes=None, is_mot_failure=False,
            )
            for name, rag in (("Wipers", "red"), ("Tyres", "amber"), ("Lights", "green"), ("Horn", "green"))
        ],
    )
    hooks, _ = _hooks(FakeDispatcher(), Clock(NOW + timedelta(hours=1)))

    outcome = complete_inspection(db=db, health_check_id=hc.id, current_user=user, hooks=hooks)

    assert (hc.red_count, hc.amber_count, hc.green_count) == (1, 1, 2)
    assert hc.tech_completed_at == NOW + timedelta(hours=1)
    assert hc.status == "tech_completed"
    assert sorted(item.name for item in outcome.generated_items) == ["Tyres", "Wipers"]


# --- customer link -----------------------------------------------------------------


def test_first_open_moves_sent_to_opened_once(db) -> None:
    _user, hc = _setup(db, status="sent", public_token="tok", token_expires_at=NOW + timedelta(days=7))
    hooks, _ = _hooks(FakeDispatcher())

    record_opened(db=db, token="tok", hooks=hooks)
    record_opened(db=db, token="tok", hooks=hooks)

    assert hc.status == "opened"
    assert hc.first_opened_at == NOW
    assert _events(db).count("customer_opened") == 1
    assert db.commit_calls == 1
    history = db.added_of(HealthCheckStatusHistory)
    assert [(h.to_status, h.change_source) for h in history] == [("opened", "customer")]


def test_open_expired_link_is_gone(db) -> None:
    _user, hc = _setup(db, status="sent", public_token="tok", token_expires_at=NOW - timedelta(seconds=1))
    hooks, _ = _hooks(FakeDispatcher())

    with pytest.raises(PreconditionFailed) as exc:
        record_opened(db=db, token="tok", hooks=hooks)

    assert exc.value.http_status == 410
    assert hc.status == "sent"


def test_expire_only_lapsed_links(db) -> None:
    _user, lapsed = _setup(db, status="opened", token_expires_at=NOW - timedelta(days=1))
    _user, fresh = _setup(db, status="opened", token_expires_at=NOW + timedelta(days=1))

    assert expire_health_check(db, health_check=lapsed, at=NOW) is True
    assert expire_health_check(db, health_check=fresh, at=NOW) is False
    assert lapsed.status == "expired"
    assert fresh.status == "opened"


# --- completion and closure ----------------------------------------------------------


def test_complete_work_blocked_by_outstanding_authorised_work(db) -> None:
    user, hc = _setup(db, status="authorized")
    item = db.seed(RepairItem, make_item(health_check_id=hc.id, org_id=hc.org_id, labour=Decimal("80")))
    db.seed(RepairItemAuthorization, make_decision(item, "approved"))

    with pytest.raises(PreconditionFailed) as exc:
        complete_work(db=db, health_check_id=hc.id, current_user=user)

    assert exc.value.code == "AUTHORISED_WORK_OUTSTANDING"
    assert exc.value.details == {"outstandingValue": "80.00"}

    item.labour_completed_at = NOW
    item.no_parts_required = True
    complete_work(db=db, health_check_id=hc.id, current_user=user)

    assert hc.status == "completed"


def test_close_stamps_closer(db) -> None:
    user, hc = _setup(db, status="declined")
    hooks, _ = _hooks(FakeDispatcher())

    close_health_check(db=db, health_check_id=hc.id, current_user=user, hooks=hooks)

    assert hc.status == "closed"
    assert hc.closed_at == NOW
    assert hc.closed_by_id == user.id


def test_close_from_sent_is_rejected(db) -> None:
    user, hc = _setup(db, status="sent")

    with pytest.raises(PreconditionFailed) as exc:
        close_health_check(db=db, health_check_id=hc.id, current_user=user)

    assert exc.value.code == "INVALID_STATUS_FOR_ACTION"
    assert hc.closed_at is None


def test_cancel_closed_health_check_is_invalid_transition(db) -> None:
    user, hc = _setup(db, status="closed")

    with pytest.raises(PreconditionFailed) as exc:
        cancel_health_check(db=db, health_check_id=hc.id, reason="Duplicate", current_user=user)

    assert exc.value.code == "INVALID_STATUS_TRANSITION"
    assert hc.status == "closed"
    assert hc.cancelled_reason is None
    assert db.commit_calls == 0


def test_close_readiness_lists_warnings(db) -> None:
    user, hc = _setup(db, status="partial_response")
    approved = make_item(health_check_id=hc.id, org_id=hc.org_id, labour=Decimal("10"))
    undecided = make_item(health_check_id=hc.id, org_id=hc.org_id, labour=Decimal("20"))
    db.seed(RepairItem, approved, undecided)
    db.seed(RepairItemAuthorization, make_decision(approved, "approved"))

    readiness = evaluate_close_readiness(db=db, health_check_id=hc.id, current_user=user)

    assert readiness.undecided_items == [undecided.id]
    assert readiness.incomplete_work_items == [approved.id]
    assert readiness.has_warnings
