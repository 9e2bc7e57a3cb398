from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from factories import make_decision, make_health_check, make_item
from vhc.domain_errors import PreconditionFailed
from vhc.models import HEALTH_CHECK_STATUSES
from vhc.services.workflow_status import (
    ALLOWED_TRANSITIONS,
    compute_workflow_status,
    derive_customer_response,
    validate_status_transition,
)


NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _three_priced():
    return [make_item(labour=Decimal("50")) for _ in range(3)]


def test_transition_table_covers_every_status() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(HEALTH_CHECK_STATUSES)
    for targets in ALLOWED_TRANSITIONS.values():
        assert targets <= set(HEALTH_CHECK_STATUSES)


def test_closed_and_cancelled_are_terminal() -> None:
    for terminal in ("closed", "cancelled"):
        with pytest.raises(PreconditionFailed) as exc:
            validate_status_transition(current_status=terminal, next_status="created")
        assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_allowed_transition_returns_next_status() -> None:
    assert validate_status_transition(current_status="ready_to_send", next_status="sent") == "sent"


@pytest.mark.parametrize(
    ("decisions", "expected"),
    [
        (["approved", "approved", "declined"], "partial_response"),
        (["approved", "approved", "approved"], "authorized"),
        (["declined", "declined", "declined"], "declined"),
        (["approved", None, None], "partial_response"),
        ([None, None, None], None),
    ],
)
def test_customer_response_derivation(decisions, expected) -> None:
    items = _three_priced()
    auths = [make_decision(item, d) for item, d in zip(items, decisions) if d]

    assert derive_customer_response(items, auths) == expected


def test_hidden_and_unpriced_items_are_not_decidable() -> None:
    approved = make_item(labour=Decimal("50"))
    hidden = make_item(labour=Decimal("50"), is_visible=False)
    unpriced = make_item()

    result = derive_customer_response([approved, hidden, unpriced], [make_decision(approved, "approved")])

    assert result == "authorized"


def test_group_follows_unanimous_children_decision() -> None:
    a = make_item(labour=Decimal("10"))
    b = make_item(labour=Decimal("20"))
    group = make_item(is_group=True, children=[a, b])

    result = derive_customer_response([group, a, b], [make_decision(a, "declined"), make_decision(b, "declined")])

    assert result == "declined"


def test_workflow_badges_for_mixed_state() -> None:
    tech_id = uuid4()
    hc = make_health_check(org_id=uuid4(), technician_id=tech_id, tech_started_at=NOW, tech_completed_at=NOW, sent_at=NOW)
    done = make_item(
        labour=Decimal("10"),
        labour_completed_at=NOW,
        parts_completed_at=NOW,
        labour_completed_by_id=tech_id,
    )
    open_item = make_item(labour=Decimal("10"), labour_entries=[object()])

    status = compute_workflow_status(hc, [done, open_item], [make_decision(done, "approved", decided_at=NOW)])

    assert status.technician == "complete"
    assert status.attribution["technician"].by == tech_id
    assert status.labour == "partial"
    assert status.parts == "partial"
    assert status.authorisation == "partial"
    assert status.quote == "partial"
    assert status.sent == "complete"
    assert status.repair_item_count == 2


def test_workflow_badges_complete_with_attribution() -> None:
    hc = make_health_check(org_id=uuid4(), tech_started_at=NOW)
    by = uuid4()
    item = make_item(labour=Decimal("10"), labour_completed_at=NOW, labour_completed_by_id=by, no_parts_required=True)

    status = compute_workflow_status(hc, [item], [make_decision(item, "declined", decided_at=NOW, decided_by_id=by)])

    assert status.technician == "in_progress"
    assert status.labour == "complete"
    assert status.attribution["labour"].by == by
    assert status.parts == "complete"
    assert status.authorisation == "complete"
    assert status.quote == "complete"
    assert status.sent == "pending"


def test_no_items_reports_pending_badges() -> None:
    status = compute_workflow_status(make_health_check(org_id=uuid4()), [], [])

    assert (status.technician, status.labour, status.parts, status.authorisation, status.quote) == (
        "pending", "pending", "pending", "pending", "pending",
    )
