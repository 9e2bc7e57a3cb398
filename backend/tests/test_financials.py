from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from factories import make_decision, make_item
from vhc.services.financials import compute_health_check_totals, compute_totals, effective_total


NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _work_done(item):
    item.labour_completed_at = NOW
    item.parts_completed_at = NOW
    return item


def _flatten(*items):
    rows = []
    for item in items:
        rows.append(item)
        rows.extend(item.children)
    return rows


def test_group_effective_total_rolls_up_children() -> None:
    group = make_item(is_group=True, children=[make_item(labour=Decimal("120")), make_item(parts=Decimal("80"))])

    totals = compute_totals(_flatten(group), [])

    assert effective_total(group) == Decimal("200")
    assert totals.total_identified == Decimal("200.00")
    assert totals.total_pending == Decimal("200.00")


def test_totals_round_once_at_aggregation() -> None:
    a = make_item(labour=Decimal("131.625"))
    b = make_item(labour=Decimal("131.625"))

    totals = compute_totals([a, b], [])

    assert totals.total_identified == Decimal("263.25")


def test_decisions_partition_buckets() -> None:
    approved = make_item(labour=Decimal("100"))
    declined = make_item(parts=Decimal("40"))
    pending = make_item(labour=Decimal("10"), parts=Decimal("5"))

    totals = compute_totals(
        [approved, declined, pending],
        [make_decision(approved, "approved"), make_decision(declined, "declined")],
    )

    assert totals.total_authorised == Decimal("100.00")
    assert totals.total_declined == Decimal("40.00")
    assert totals.total_pending == Decimal("15.00")
    assert totals.outstanding_value == Decimal("100.00")
    assert totals.completed_value == Decimal("0.00")


def test_group_decision_takes_whole_effective_total() -> None:
    group = make_item(
        is_group=True,
        labour=Decimal("20"),
        children=[make_item(labour=Decimal("30")), make_item(parts=Decimal("50"))],
    )

    totals = compute_totals(_flatten(group), [make_decision(group, "approved")])

    assert totals.total_authorised == Decimal("100.00")
    assert totals.total_pending == Decimal("0.00")


def test_children_decided_independently_and_group_cost_follows_unanimous_children() -> None:
    a = make_item(labour=Decimal("30"))
    b = make_item(parts=Decimal("50"))
    group = make_item(is_group=True, labour=Decimal("20"), children=[a, b])

    mixed = compute_totals(_flatten(group), [make_decision(a, "approved"), make_decision(b, "declined")])
    unanimous = compute_totals(_flatten(group), [make_decision(a, "approved"), make_decision(b, "approved")])

    assert mixed.total_authorised == Decimal("30.00")
    assert mixed.total_declined == Decimal("50.00")
    assert mixed.total_pending == Decimal("20.00")
    assert unanimous.total_authorised == Decimal("100.00")


def test_completed_value_requires_labour_and_parts_complete() -> None:
    done = _work_done(make_item(labour=Decimal("60")))
    half = make_item(labour=Decimal("40"), labour_completed_at=NOW)

    totals = compute_totals([done, half], [make_decision(done, "approved"), make_decision(half, "approved")])

    assert totals.completed_value == Decimal("60.00")
    assert totals.outstanding_value == Decimal("40.00")


def test_deleted_items_are_excluded() -> None:
    live = make_item(labour=Decimal("10"))
    deleted = make_item(labour=Decimal("99"), deleted_at=NOW)

    assert compute_totals([live, deleted], []).total_identified == Decimal("10.00")


def test_aggregation_is_idempotent() -> None:
    items = [make_item(labour=Decimal("12.345")), make_item(parts=Decimal("7.5"))]
    auths = [make_decision(items[0], "approved")]

    assert compute_totals(items, auths) == compute_totals(items, auths)


def test_health_check_totals_use_effective_totals() -> None:
    group = make_item(is_group=True, parts=Decimal("5"), children=[make_item(labour=Decimal("10.005"))])

    labour, parts, amount = compute_health_check_totals(_flatten(group))

    assert labour == Decimal("10.01")
    assert parts == Decimal("5.00")
    assert amount == Decimal("15.01")
