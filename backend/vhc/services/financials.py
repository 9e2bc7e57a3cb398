"""Financial rollups over repair items and their customer decisions."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from .completion import is_work_complete, live_children
from .money import ZERO, round_currency
from .pricing import own_labour_total, own_parts_total, own_vat_amount


DECISION_APPROVED = "approved"
DECISION_DECLINED = "declined"


@dataclass(frozen=True)
class FinancialTotals:
    total_identified: Decimal = Decimal("0.00")
    total_authorised: Decimal = Decimal("0.00")
    total_declined: Decimal = Decimal("0.00")
    total_pending: Decimal = Decimal("0.00")
    completed_value: Decimal = Decimal("0.00")
    outstanding_value: Decimal = Decimal("0.00")


def own_total(item) -> Decimal:
    """Direct cost of the item, or of its selected option."""
    return own_labour_total(item) + own_parts_total(item)


def effective_total(item) -> Decimal:
    """Own direct cost plus, for groups, every live child's cost. Unrounded."""
    total = own_total(item)
    if item.is_group:
        for child in live_children(item):
            total += own_total(child)
    return total


def effective_labour_total(item) -> Decimal:
    total = own_labour_total(item)
    if item.is_group:
        total += sum((own_labour_total(c) for c in live_children(item)), ZERO)
    return total


def effective_parts_total(item) -> Decimal:
    total = own_parts_total(item)
    if item.is_group:
        total += sum((own_parts_total(c) for c in live_children(item)), ZERO)
    return total


def effective_vat_amount(item) -> Decimal:
    total = own_vat_amount(item)
    if item.is_group:
        total += sum((own_vat_amount(c) for c in live_children(item)), ZERO)
    return total


def top_level_items(repair_items: Iterable) -> list:
    return [
        item for item in repair_items
        if item.deleted_at is None and item.parent_repair_item_id is None
    ]


def decision_map(authorizations: Iterable) -> dict:
    return {auth.repair_item_id: auth.decision for auth in authorizations}


def unanimous_child_decision(group, decisions: Mapping) -> Optional[str]:
    """The decision shared by every live child, or None when they differ or any is pending."""
    children = live_children(group)
    if not children:
        return None
    child_decisions = {decisions.get(child.id) for child in children}
    if len(child_decisions) == 1:
        return child_decisions.pop()
    return None


def item_decision(item, decisions: Mapping) -> Optional[str]:
    """Current decision for a top-level item; groups fall back to their children's unanimous decision."""
    own = decisions.get(item.id)
    if own is not None or not item.is_group:
        return own
    return unanimous_child_decision(item, decisions)


def is_priced(item) -> bool:
    return effective_total(item) > 0


def decidable_items(repair_items: Iterable) -> list:
    """Items the customer is asked to decide on: top-level, visible and priced."""
    return [item for item in top_level_items(repair_items) if item.is_visible and is_priced(item)]


class _Buckets:
    def __init__(self) -> None:
        self.authorised = ZERO
        self.declined = ZERO
        self.pending = ZERO
        self.completed = ZERO

    def add(self, amount: Decimal, decision: Optional[str], work_complete: bool) -> None:
        if decision == DECISION_APPROVED:
            self.authorised += amount
            if work_complete:
                self.completed += amount
        elif decision == DECISION_DECLINED:
            self.declined += amount
        else:
            self.pending += amount


def compute_totals(repair_items: Iterable, authorizations: Iterable) -> FinancialTotals:
    """Partition effective totals by current decision and round once at the end."""
    items = top_level_items(repair_items)
    decisions = decision_map(authorizations)
    buckets = _Buckets()
    identified = ZERO

    for item in items:
        identified += effective_total(item)
        own_decision = decisions.get(item.id)

        if not item.is_group or own_decision is not None:
            buckets.add(effective_total(item), own_decision, is_work_complete(item))
            continue

        for child in live_children(item):
            buckets.add(own_total(child), decisions.get(child.id), is_work_complete(child, parent=item))
        buckets.add(own_total(item), unanimous_child_decision(item, decisions), is_work_complete(item))

    return FinancialTotals(
        total_identified=round_currency(identified),
        total_authorised=round_currency(buckets.authorised),
        total_declined=round_currency(buckets.declined),
        total_pending=round_currency(buckets.pending),
        completed_value=round_currency(buckets.completed),
        outstanding_value=round_currency(buckets.authorised - buckets.completed),
    )


def compute_health_check_totals(repair_items: Iterable) -> tuple[Decimal, Decimal, Decimal]:
    """(labour, parts, amount) over live top-level items, rounded for storage on the health check."""
    labour = ZERO
    parts = ZERO
    for item in top_level_items(repair_items):
        labour += effective_labour_total(item)
        parts += effective_parts_total(item)
    return round_currency(labour), round_currency(parts), round_currency(labour + parts)


def compute_health_check_vat(repair_items: Iterable) -> Decimal:
    """VAT over live top-level items; each owner's VAT is already rounded to pence."""
    return round_currency(sum((effective_vat_amount(item) for item in top_level_items(repair_items)), ZERO))
