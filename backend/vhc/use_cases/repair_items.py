"""Repair item use-cases: creation, editing, hierarchy and pricing lines."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import conflict, not_found, precondition_failed
from ..models import (
    CheckResult,
    HealthCheck,
    MriScanResult,
    RepairItem,
    RepairItemCheckResult,
    RepairLabour,
    RepairPart,
    User,
)
from ..services.completion import live_children
from ..services.financials import compute_health_check_totals, compute_health_check_vat
from ..services.money import (
    ZERO,
    labour_line_total,
    margin_percent,
    markup_percent,
    part_line_total,
    to_decimal,
)
from ..services.pricing import recalculate_line_totals
from ..services.store import (
    commit_or_raise,
    flush_or_raise,
    load_health_check,
    load_repair_item,
    load_repair_items,
    load_repair_option,
)
from ..services.timeline import record_event
from ..services.workflow_status import apply_status_change, now_utc, sync_customer_response

logger = logging.getLogger(__name__)

FLAGGED_RAG_STATUSES: set[str] = {"red", "amber"}
UPDATABLE_FIELDS: set[str] = {"name", "description", "is_visible", "rag_status", "sort_order", "is_mot_failure"}
_LOCKED_STATUSES: set[str] = {"closed", "cancelled"}


def ensure_editable(health_check: HealthCheck) -> None:
    if health_check.status in _LOCKED_STATUSES:
        raise precondition_failed(
            "HEALTH_CHECK_LOCKED",
            f"Repair items cannot be changed while the health check is {health_check.status}",
            http_status=409,
        )


def _next_sort_order(db: Session, *, health_check_id: UUID) -> int:
    current = db.query(func.max(RepairItem.sort_order)).filter(
        RepairItem.health_check_id == health_check_id,
    ).scalar()
    return int(current or 0) + 1


def _repair_item_name(check_result: CheckResult) -> str:
    if check_result.vehicle_location_name:
        return f"{check_result.vehicle_location_name} {check_result.item_name}"
    return check_result.item_name


def item_health_check(db: Session, item: RepairItem, current_user: User) -> HealthCheck:
    return load_health_check(db=db, health_check_id=item.health_check_id, org_id=current_user.org_id)


def recalculate_totals(owner) -> None:
    recalculate_line_totals(owner, vat_rate=settings.VAT_RATE)


def refresh_health_check_totals(db: Session, *, health_check: HealthCheck) -> None:
    flush_or_raise(db)
    items = load_repair_items(db=db, health_check_id=health_check.id)
    labour, parts, amount = compute_health_check_totals(items)
    vat = compute_health_check_vat(items)
    health_check.total_labour = labour
    health_check.total_parts = parts
    health_check.total_amount = amount
    health_check.total_vat = vat
    health_check.total_inc_vat = amount + vat


def _new_repair_item(*, health_check: HealthCheck, sort_order: int, current_user: Optional[User], **fields) -> RepairItem:
    return RepairItem(
        id=uuid4(),
        org_id=health_check.org_id,
        health_check_id=health_check.id,
        sort_order=sort_order,
        is_group=fields.pop("is_group", False),
        is_visible=fields.pop("is_visible", True),
        is_mot_failure=fields.pop("is_mot_failure", False),
        labour_total=ZERO,
        parts_total=ZERO,
        vat_amount=ZERO,
        created_by_id=current_user.id if current_user else None,
        **fields,
    )


def _live_check_result_link(db: Session, *, check_result_id: UUID) -> Optional[RepairItemCheckResult]:
    return (
        db.query(RepairItemCheckResult)
        .join(RepairItem, RepairItem.id == RepairItemCheckResult.repair_item_id)
        .filter(
            RepairItemCheckResult.check_result_id == check_result_id,
            RepairItem.deleted_at == None,
        )
        .first()
    )


def create_repair_item_from_check_result(
    *,
    db: Session,
    health_check_id: UUID,
    check_result_id: UUID,
    current_user: User,
) -> RepairItem:
    """Create a repair item addressing one red/amber check result."""
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    ensure_editable(health_check)

    check_result = db.query(CheckResult).filter(
        CheckResult.id == check_result_id,
        CheckResult.health_check_id == health_check.id,
    ).first()
    if not check_result:
        raise not_found("CHECK_RESULT_NOT_FOUND", "Check result not found")
    if check_result.rag_status not in FLAGGED_RAG_STATUSES:
        raise precondition_failed(
            "CHECK_RESULT_NOT_FLAGGED",
            "Only red or amber results can become repair items",
        )
    if _live_check_result_link(db, check_result_id=check_result.id):
        raise conflict(
            "CHECK_RESULT_ALREADY_LINKED",
            "This result already has a repair item",
            details={"checkResultId": str(check_result.id)},
        )

    item = _new_repair_item(
        health_check=health_check,
        sort_order=_next_sort_order(db, health_check_id=health_check.id),
        current_user=current_user,
        name=_repair_item_name(check_result),
        description=check_result.notes,
        rag_status=check_result.rag_status,
        is_mot_failure=bool(check_result.is_mot_failure),
        source="check_result",
    )
    db.add(item)
    db.add(RepairItemCheckResult(repair_item_id=item.id, check_result_id=check_result.id))
    record_event(
        db,
        health_check=health_check,
        event_type="repair_item_created",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "source": "check_result"},
    )
    commit_or_raise(db)
    return item


def create_manual_repair_item(
    *,
    db: Session,
    health_check_id: UUID,
    name: str,
    current_user: User,
    description: Optional[str] = None,
    rag_status: Optional[str] = None,
    is_visible: bool = True,
    is_mot_failure: bool = False,
) -> RepairItem:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    ensure_editable(health_check)

    title = (name or "").strip()
    if not title:
        raise precondition_failed("REPAIR_ITEM_NAME_REQUIRED", "Repair item name is required")
    if rag_status is not None and rag_status not in FLAGGED_RAG_STATUSES:
        raise precondition_failed("INVALID_RAG_STATUS", "Repair item severity must be red or amber")

    item = _new_repair_item(
        health_check=health_check,
        sort_order=_next_sort_order(db, health_check_id=health_check.id),
        current_user=current_user,
        name=title,
        description=description,
        rag_status=rag_status,
        is_visible=is_visible,
        is_mot_failure=is_mot_failure,
        source="manual",
    )
    db.add(item)
    record_event(
        db,
        health_check=health_check,
        event_type="repair_item_created",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "source": "manual"},
    )
    commit_or_raise(db)
    return item


def update_repair_item(
    *,
    db: Session,
    repair_item_id: UUID,
    changes: dict[str, Any],
    current_user: User,
) -> RepairItem:
    """Apply editable field changes; unknown fields are rejected."""
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise precondition_failed(
            "REPAIR_ITEM_FIELD_NOT_EDITABLE",
            "Some fields cannot be edited",
            details={"fields": sorted(unknown)},
        )
    if "name" in changes and not (changes["name"] or "").strip():
        raise precondition_failed("REPAIR_ITEM_NAME_REQUIRED", "Repair item name is required")
    if changes.get("rag_status") is not None and changes["rag_status"] not in FLAGGED_RAG_STATUSES:
        raise precondition_failed("INVALID_RAG_STATUS", "Repair item severity must be red or amber")

    changed: dict[str, Any] = {}
    for field, value in changes.items():
        if getattr(item, field) != value:
            changed[field] = value
            setattr(item, field, value)
    if not changed:
        return item

    record_event(
        db,
        health_check=health_check,
        event_type="repair_item_updated",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"changes": {k: str(v) if v is not None else None for k, v in changed.items()}},
    )
    if "is_visible" in changed:
        sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return item


def _mark_deleted(item: RepairItem, *, current_user: User, reason: Optional[str], at) -> None:
    item.deleted_at = at
    item.deleted_by_id = current_user.id
    item.deleted_reason = reason


def soft_delete_repair_item(
    *,
    db: Session,
    repair_item_id: UUID,
    current_user: User,
    reason: Optional[str] = None,
) -> RepairItem:
    """Soft delete an item; deleting a group deletes its children as well."""
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    at = now_utc()
    deleted_children = []
    if item.is_group:
        for child in live_children(item):
            _mark_deleted(child, current_user=current_user, reason=reason, at=at)
            deleted_children.append(str(child.id))
    _mark_deleted(item, current_user=current_user, reason=reason, at=at)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_item_deleted",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "reason": reason, "deletedChildren": deleted_children},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return item


# --- Hierarchy -------------------------------------------------------------


def _ensure_can_join_group(*, group: RepairItem, child: RepairItem) -> None:
    if child.id == group.id:
        raise precondition_failed("REPAIR_GROUP_SELF_REFERENCE", "A group cannot contain itself")
    if child.health_check_id != group.health_check_id:
        raise precondition_failed(
            "REPAIR_GROUP_HEALTH_CHECK_MISMATCH",
            "Grouped items must belong to the same health check",
        )
    if child.is_group:
        raise precondition_failed("REPAIR_GROUP_NESTING", "Groups cannot be nested")
    if child.parent_repair_item_id is not None:
        raise conflict(
            "REPAIR_ITEM_ALREADY_GROUPED",
            "Repair item already belongs to a group",
            details={"repairItemId": str(child.id)},
        )


def _adopt(group: RepairItem, child: RepairItem) -> None:
    # Membership goes through group.children so the flush inserts the group
    # before re-parenting and the loaded collection matches the rows.
    group.children.append(child)
    child.parent_repair_item_id = group.id


def _release(group: RepairItem, child: RepairItem) -> None:
    if child in group.children:
        group.children.remove(child)
    child.parent_repair_item_id = None


def _load_group(db: Session, *, group_id: UUID, current_user: User) -> RepairItem:
    group = load_repair_item(db=db, repair_item_id=group_id, org_id=current_user.org_id)
    if not group.is_group:
        raise precondition_failed("REPAIR_ITEM_NOT_GROUP", "Repair item is not a group")
    return group


def create_repair_group(
    *,
    db: Session,
    health_check_id: UUID,
    name: str,
    child_ids: list[UUID],
    current_user: User,
    description: Optional[str] = None,
) -> RepairItem:
    """Create a group from existing standalone items of one health check."""
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    ensure_editable(health_check)

    title = (name or "").strip()
    if not title:
        raise precondition_failed("REPAIR_ITEM_NAME_REQUIRED", "Group name is required")
    unique_ids = list(dict.fromkeys(child_ids))
    if len(unique_ids) < 2:
        raise precondition_failed("REPAIR_GROUP_TOO_SMALL", "A group needs at least two repair items")

    children = [load_repair_item(db=db, repair_item_id=cid, org_id=current_user.org_id) for cid in unique_ids]
    group = _new_repair_item(
        health_check=health_check,
        sort_order=min(c.sort_order or 0 for c in children),
        current_user=current_user,
        name=title,
        description=description,
        is_group=True,
        source="manual",
    )
    severities = {c.rag_status for c in children}
    group.rag_status = "red" if "red" in severities else ("amber" if "amber" in severities else None)

    for child in children:
        _ensure_can_join_group(group=group, child=child)
    db.add(group)
    for child in children:
        _adopt(group, child)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_group_created",
        actor=current_user,
        entity_type="repair_item",
        entity_id=group.id,
        details={"name": group.name, "children": [str(c.id) for c in children]},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return group


def add_child_to_group(*, db: Session, group_id: UUID, child_id: UUID, current_user: User) -> RepairItem:
    group = _load_group(db, group_id=group_id, current_user=current_user)
    health_check = item_health_check(db, group, current_user)
    ensure_editable(health_check)

    child = load_repair_item(db=db, repair_item_id=child_id, org_id=current_user.org_id)
    # Idempotent: already in this group.
    if child.parent_repair_item_id == group.id:
        return group
    _ensure_can_join_group(group=group, child=child)
    _adopt(group, child)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_group_child_added",
        actor=current_user,
        entity_type="repair_item",
        entity_id=group.id,
        details={"childId": str(child.id), "childName": child.name},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return group


def remove_child_from_group(*, db: Session, group_id: UUID, child_id: UUID, current_user: User) -> RepairItem:
    """Promote a child back to a standalone item."""
    group = _load_group(db, group_id=group_id, current_user=current_user)
    health_check = item_health_check(db, group, current_user)
    ensure_editable(health_check)

    child = load_repair_item(db=db, repair_item_id=child_id, org_id=current_user.org_id)
    if child.parent_repair_item_id != group.id:
        raise precondition_failed("REPAIR_ITEM_NOT_IN_GROUP", "Repair item is not part of this group")
    _release(group, child)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_group_child_removed",
        actor=current_user,
        entity_type="repair_item",
        entity_id=group.id,
        details={"childId": str(child.id), "childName": child.name},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return child


def ungroup_repair_group(*, db: Session, group_id: UUID, current_user: User) -> list[RepairItem]:
    """Promote every child; the group row is deleted unless it carries its own pricing."""
    group = _load_group(db, group_id=group_id, current_user=current_user)
    health_check = item_health_check(db, group, current_user)
    ensure_editable(health_check)

    children = live_children(group)
    for child in children:
        _release(group, child)

    has_own_pricing = bool(group.labour_entries) or bool(group.part_entries) or bool(group.options)
    if has_own_pricing:
        group.is_group = False
    else:
        _mark_deleted(group, current_user=current_user, reason="ungrouped", at=now_utc())

    record_event(
        db,
        health_check=health_check,
        event_type="repair_group_ungrouped",
        actor=current_user,
        entity_type="repair_item",
        entity_id=group.id,
        details={"children": [str(c.id) for c in children], "keptAsItem": has_own_pricing},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return children


# --- Pricing lines -------------------------------------------------------------


def _pricing_started(db: Session, *, health_check: HealthCheck, actor: User) -> None:
    """First pricing line on an inspected health check moves it into pricing."""
    if health_check.status == "tech_completed":
        apply_status_change(db, health_check=health_check, to_status="awaiting_pricing", actor=actor)


def _invalid_amount(exc: ValueError):
    return precondition_failed("INVALID_PRICING_LINE", str(exc))


def _pricing_owner(db: Session, *, item: RepairItem, repair_option_id: Optional[UUID], current_user: User):
    """The item itself, or the option of that item the line is being added to."""
    if repair_option_id is None:
        return item
    option, option_item = load_repair_option(db=db, repair_option_id=repair_option_id, org_id=current_user.org_id)
    if option_item.id != item.id:
        raise not_found("REPAIR_OPTION_NOT_FOUND", "Repair option not found")
    return option


def _line_owner(db: Session, entry, *, current_user: User) -> tuple[Any, RepairItem]:
    if entry.repair_option_id is not None:
        return load_repair_option(db=db, repair_option_id=entry.repair_option_id, org_id=current_user.org_id)
    item = load_repair_item(db=db, repair_item_id=entry.repair_item_id, org_id=current_user.org_id)
    return item, item


def _line_owner_ids(owner, item: RepairItem) -> dict[str, Optional[UUID]]:
    if owner is item:
        return {"repair_item_id": item.id, "repair_option_id": None}
    return {"repair_item_id": None, "repair_option_id": owner.id}


def _owner_details(owner, item: RepairItem) -> dict[str, Optional[str]]:
    return {"repairItemId": str(item.id), "repairOptionId": None if owner is item else str(owner.id)}


def _clear_waiver(item: RepairItem, kind: str) -> None:
    if getattr(item, f"no_{kind}_required"):
        setattr(item, f"no_{kind}_required", False)
        setattr(item, f"no_{kind}_required_at", None)
        setattr(item, f"no_{kind}_required_by_id", None)


def _after_pricing_change(db: Session, *, health_check: HealthCheck, current_user: User) -> None:
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)


def add_labour_entry(
    *,
    db: Session,
    repair_item_id: UUID,
    labour_code: str,
    hours: Decimal,
    rate: Decimal,
    current_user: User,
    discount_percent: Decimal = Decimal("0"),
    description: Optional[str] = None,
    is_vat_exempt: bool = False,
    notes: Optional[str] = None,
    repair_option_id: Optional[UUID] = None,
) -> RepairLabour:
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)
    owner = _pricing_owner(db, item=item, repair_option_id=repair_option_id, current_user=current_user)

    try:
        total = labour_line_total(hours=hours, rate=rate, discount_percent=discount_percent)
    except ValueError as exc:
        raise _invalid_amount(exc) from exc

    entry = RepairLabour(
        id=uuid4(),
        labour_code=labour_code,
        description=description,
        hours=to_decimal(hours),
        rate=to_decimal(rate),
        discount_percent=to_decimal(discount_percent),
        total=total,
        is_vat_exempt=is_vat_exempt,
        notes=notes,
        created_by_id=current_user.id,
        **_line_owner_ids(owner, item),
    )
    owner.labour_entries.append(entry)
    if owner is item:
        _clear_waiver(item, "labour")
    recalculate_totals(owner)

    record_event(
        db,
        health_check=health_check,
        event_type="labour_added",
        actor=current_user,
        entity_type="labour",
        entity_id=entry.id,
        details={
            **_owner_details(owner, item),
            "labourCode": labour_code,
            "hours": str(entry.hours),
            "total": str(total),
        },
    )
    _pricing_started(db, health_check=health_check, actor=current_user)
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return entry


def _load_labour_entry(db: Session, *, labour_id: UUID, current_user: User) -> tuple[RepairLabour, Any, RepairItem]:
    entry = db.query(RepairLabour).filter(RepairLabour.id == labour_id).first()
    if not entry:
        raise not_found("LABOUR_ENTRY_NOT_FOUND", "Labour entry not found")
    owner, item = _line_owner(db, entry, current_user=current_user)
    return entry, owner, item


def update_labour_entry(
    *,
    db: Session,
    labour_id: UUID,
    changes: dict[str, Any],
    current_user: User,
) -> RepairLabour:
    entry, owner, item = _load_labour_entry(db, labour_id=labour_id, current_user=current_user)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    hours = changes.get("hours", entry.hours)
    rate = changes.get("rate", entry.rate)
    discount = changes.get("discount_percent", entry.discount_percent)
    try:
        total = labour_line_total(hours=hours, rate=rate, discount_percent=discount)
    except ValueError as exc:
        raise _invalid_amount(exc) from exc
    for field in ("labour_code", "description", "is_vat_exempt", "notes"):
        if field in changes:
            setattr(entry, field, changes[field])
    entry.total = total
    entry.hours = to_decimal(hours)
    entry.rate = to_decimal(rate)
    entry.discount_percent = to_decimal(discount)
    recalculate_totals(owner)

    record_event(
        db,
        health_check=health_check,
        event_type="labour_updated",
        actor=current_user,
        entity_type="labour",
        entity_id=entry.id,
        details={**_owner_details(owner, item), "total": str(entry.total)},
    )
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return entry


def delete_labour_entry(*, db: Session, labour_id: UUID, current_user: User) -> RepairItem:
    entry, owner, item = _load_labour_entry(db, labour_id=labour_id, current_user=current_user)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    owner.labour_entries.remove(entry)
    db.delete(entry)
    recalculate_totals(owner)
    # Last line gone: completion no longer stands unless labour was waived.
    if (
        owner is item
        and not item.labour_entries
        and item.labour_completed_at is not None
        and not item.no_labour_required
    ):
        item.labour_completed_at = None
        item.labour_completed_by_id = None

    record_event(
        db,
        health_check=health_check,
        event_type="labour_deleted",
        actor=current_user,
        entity_type="labour",
        entity_id=entry.id,
        details={**_owner_details(owner, item), "labourCode": entry.labour_code},
    )
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return item


def _part_prices(*, quantity, sell_price, cost_price, discount_percent) -> dict[str, Any]:
    try:
        line_total = part_line_total(quantity=quantity, sell_price=sell_price, discount_percent=discount_percent)
    except ValueError as exc:
        raise _invalid_amount(exc) from exc
    if to_decimal(cost_price) < 0:
        raise precondition_failed("INVALID_PRICING_LINE", "cost_price must not be negative")
    return {
        "quantity": to_decimal(quantity),
        "sell_price": to_decimal(sell_price),
        "cost_price": to_decimal(cost_price),
        "discount_percent": to_decimal(discount_percent),
        "line_total": line_total,
        "margin_percent": margin_percent(cost_price=cost_price, sell_price=sell_price),
        "markup_percent": markup_percent(cost_price=cost_price, sell_price=sell_price),
    }


def add_part_entry(
    *,
    db: Session,
    repair_item_id: UUID,
    description: str,
    quantity: Decimal,
    sell_price: Decimal,
    current_user: User,
    cost_price: Decimal = Decimal("0"),
    discount_percent: Decimal = Decimal("0"),
    part_number: Optional[str] = None,
    supplier_name: Optional[str] = None,
    notes: Optional[str] = None,
    repair_option_id: Optional[UUID] = None,
) -> RepairPart:
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)
    owner = _pricing_owner(db, item=item, repair_option_id=repair_option_id, current_user=current_user)

    prices = _part_prices(
        quantity=quantity,
        sell_price=sell_price,
        cost_price=cost_price,
        discount_percent=discount_percent,
    )
    entry = RepairPart(
        id=uuid4(),
        part_number=part_number,
        description=description,
        supplier_name=supplier_name,
        notes=notes,
        created_by_id=current_user.id,
        **_line_owner_ids(owner, item),
        **prices,
    )
    owner.part_entries.append(entry)
    if owner is item:
        _clear_waiver(item, "parts")
    recalculate_totals(owner)

    record_event(
        db,
        health_check=health_check,
        event_type="parts_added",
        actor=current_user,
        entity_type="parts",
        entity_id=entry.id,
        details={
            **_owner_details(owner, item),
            "partNumber": part_number,
            "quantity": str(entry.quantity),
            "lineTotal": str(entry.line_total),
        },
    )
    _pricing_started(db, health_check=health_check, actor=current_user)
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return entry


def _load_part_entry(db: Session, *, part_id: UUID, current_user: User) -> tuple[RepairPart, Any, RepairItem]:
    entry = db.query(RepairPart).filter(RepairPart.id == part_id).first()
    if not entry:
        raise not_found("PART_ENTRY_NOT_FOUND", "Parts entry not found")
    owner, item = _line_owner(db, entry, current_user=current_user)
    return entry, owner, item


def update_part_entry(
    *,
    db: Session,
    part_id: UUID,
    changes: dict[str, Any],
    current_user: User,
) -> RepairPart:
    entry, owner, item = _load_part_entry(db, part_id=part_id, current_user=current_user)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    prices = _part_prices(
        quantity=changes.get("quantity", entry.quantity),
        sell_price=changes.get("sell_price", entry.sell_price),
        cost_price=changes.get("cost_price", entry.cost_price),
        discount_percent=changes.get("discount_percent", entry.discount_percent),
    )
    for field in ("part_number", "description", "supplier_name", "notes"):
        if field in changes:
            setattr(entry, field, changes[field])
    for field, value in prices.items():
        setattr(entry, field, value)
    recalculate_totals(owner)

    record_event(
        db,
        health_check=health_check,
        event_type="parts_updated",
        actor=current_user,
        entity_type="parts",
        entity_id=entry.id,
        details={**_owner_details(owner, item), "lineTotal": str(entry.line_total)},
    )
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return entry


def delete_part_entry(*, db: Session, part_id: UUID, current_user: User) -> RepairItem:
    entry, owner, item = _load_part_entry(db, part_id=part_id, current_user=current_user)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    owner.part_entries.remove(entry)
    db.delete(entry)
    recalculate_totals(owner)
    if (
        owner is item
        and not item.part_entries
        and item.parts_completed_at is not None
        and not item.no_parts_required
    ):
        item.parts_completed_at = None
        item.parts_completed_by_id = None

    record_event(
        db,
        health_check=health_check,
        event_type="parts_deleted",
        actor=current_user,
        entity_type="parts",
        entity_id=entry.id,
        details={**_owner_details(owner, item), "partNumber": entry.part_number},
    )
    _after_pricing_change(db, health_check=health_check, current_user=current_user)
    return item


# --- Auto-generation (no commit; callers own the unit of work) -------------


def generate_repair_items_from_check_results(
    db: Session,
    *,
    health_check: HealthCheck,
    actor: Optional[User],
) -> list[RepairItem]:
    """One repair item per red/amber result that is not already linked to a live item."""
    results = (
        db.query(CheckResult)
        .filter(
            CheckResult.health_check_id == health_check.id,
            CheckResult.rag_status.in_(sorted(FLAGGED_RAG_STATUSES)),
        )
        .all()
    )
    sort_order = _next_sort_order(db, health_check_id=health_check.id)
    created: list[RepairItem] = []
    for result in results:
        if _live_check_result_link(db, check_result_id=result.id):
            continue
        item = _new_repair_item(
            health_check=health_check,
            sort_order=sort_order,
            current_user=actor,
            name=_repair_item_name(result),
            description=result.notes,
            rag_status=result.rag_status,
            is_mot_failure=bool(result.is_mot_failure),
            source="check_result",
        )
        sort_order += 1
        db.add(item)
        db.add(RepairItemCheckResult(repair_item_id=item.id, check_result_id=result.id))
        record_event(
            db,
            health_check=health_check,
            event_type="repair_item_created",
            actor=actor,
            entity_type="repair_item",
            entity_id=item.id,
            details={"name": item.name, "source": "check_result", "checkResultId": str(result.id)},
        )
        created.append(item)

    if created:
        logger.info("Generated %s repair items for health check %s", len(created), health_check.id)
    return created


def generate_repair_items_from_mri_results(
    db: Session,
    *,
    health_check: HealthCheck,
    actor: Optional[User],
) -> list[RepairItem]:
    """One repair item per flagged MRI result, skipping results that already have one."""
    results = (
        db.query(MriScanResult)
        .filter(
            MriScanResult.health_check_id == health_check.id,
            MriScanResult.rag_status.in_(sorted(FLAGGED_RAG_STATUSES)),
        )
        .all()
    )
    if not results:
        return []

    existing = {
        row.mri_result_id
        for row in db.query(RepairItem).filter(
            RepairItem.health_check_id == health_check.id,
            RepairItem.mri_result_id != None,
            RepairItem.deleted_at == None,
        ).all()
    }
    sort_order = _next_sort_order(db, health_check_id=health_check.id)
    created: list[RepairItem] = []
    for result in results:
        if result.id in existing:
            continue
        item = _new_repair_item(
            health_check=health_check,
            sort_order=sort_order,
            current_user=actor,
            name=result.item_name,
            description=result.sales_description or result.description or result.notes,
            rag_status=result.rag_status,
            source="mri_scan",
            mri_result_id=result.id,
        )
        sort_order += 1
        existing.add(result.id)
        db.add(item)
        record_event(
            db,
            health_check=health_check,
            event_type="repair_item_created",
            actor=actor,
            entity_type="repair_item",
            entity_id=item.id,
            details={"name": item.name, "source": "mri_scan", "mriResultId": str(result.id)},
        )
        created.append(item)

    if created:
        logger.info("Generated %s MRI repair items for health check %s", len(created), health_check.id)
    return created
