"""Alternative pricings for a repair item and the choice between them."""
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..domain_errors import not_found, precondition_failed
from ..models import RepairItem, RepairOption, User
from ..services.money import ZERO
from ..services.store import commit_or_raise, load_repair_item, load_repair_option
from ..services.timeline import record_event
from ..services.workflow_status import sync_customer_response
from .repair_items import ensure_editable, item_health_check, refresh_health_check_totals

UPDATABLE_FIELDS: set[str] = {"name", "description", "is_recommended", "sort_order"}


def _recommend(item: RepairItem, option: RepairOption) -> None:
    # At most one recommended option per item.
    for other in item.options:
        if other is not option:
            other.is_recommended = False
    option.is_recommended = True


def _option_details(option: RepairOption) -> dict[str, Any]:
    return {"name": option.name, "repairItemId": str(option.repair_item_id)}


def create_repair_option(
    *,
    db: Session,
    repair_item_id: UUID,
    name: str,
    current_user: User,
    description: Optional[str] = None,
    is_recommended: bool = False,
) -> RepairOption:
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    title = (name or "").strip()
    if not title:
        raise precondition_failed("REPAIR_OPTION_NAME_REQUIRED", "Option name is required")

    option = RepairOption(
        id=uuid4(),
        repair_item_id=item.id,
        name=title,
        description=description,
        is_recommended=False,
        sort_order=max((o.sort_order or 0 for o in item.options), default=0) + 1,
        labour_total=ZERO,
        parts_total=ZERO,
        vat_amount=ZERO,
    )
    item.options.append(option)
    if is_recommended:
        _recommend(item, option)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_option_created",
        actor=current_user,
        entity_type="repair_option",
        entity_id=option.id,
        details=_option_details(option),
    )
    commit_or_raise(db)
    return option


def update_repair_option(
    *,
    db: Session,
    repair_option_id: UUID,
    changes: dict[str, Any],
    current_user: User,
) -> RepairOption:
    option, item = load_repair_option(db=db, repair_option_id=repair_option_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    rejected = sorted(set(changes) - UPDATABLE_FIELDS)
    if rejected:
        raise precondition_failed(
            "REPAIR_OPTION_FIELD_NOT_EDITABLE",
            "Only option details can be edited here",
            details={"fields": rejected},
        )
    if "name" in changes:
        title = (changes["name"] or "").strip()
        if not title:
            raise precondition_failed("REPAIR_OPTION_NAME_REQUIRED", "Option name is required")
        option.name = title
    if "description" in changes:
        option.description = changes["description"]
    if "sort_order" in changes:
        option.sort_order = changes["sort_order"]
    if changes.get("is_recommended"):
        _recommend(item, option)
    elif "is_recommended" in changes:
        option.is_recommended = False

    record_event(
        db,
        health_check=health_check,
        event_type="repair_option_updated",
        actor=current_user,
        entity_type="repair_option",
        entity_id=option.id,
        details={**_option_details(option), "fields": sorted(changes)},
    )
    commit_or_raise(db)
    return option


def delete_repair_option(*, db: Session, repair_option_id: UUID, current_user: User) -> RepairItem:
    """Remove an option with its lines; a selected option falls back to the item's own pricing."""
    option, item = load_repair_option(db=db, repair_option_id=repair_option_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    was_selected = item.selected_option_id == option.id
    if was_selected:
        item.selected_option = None
        item.selected_option_id = None
    item.options.remove(option)

    record_event(
        db,
        health_check=health_check,
        event_type="repair_option_deleted",
        actor=current_user,
        entity_type="repair_option",
        entity_id=option.id,
        details={**_option_details(option), "wasSelected": was_selected},
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return item


def apply_option_selection(*, item: RepairItem, option_id: Optional[UUID]) -> bool:
    """Point the item at one of its options (None: its own lines). No commit; returns whether it changed."""
    if item.selected_option_id == option_id:
        return False
    option = None
    if option_id is not None:
        option = next((o for o in item.options if o.id == option_id), None)
        if option is None:
            raise not_found("REPAIR_OPTION_NOT_FOUND", "Repair option not found")
    item.selected_option = option
    item.selected_option_id = option_id
    return True


def select_repair_option(
    *,
    db: Session,
    repair_item_id: UUID,
    option_id: Optional[UUID],
    current_user: User,
) -> RepairItem:
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = item_health_check(db, item, current_user)
    ensure_editable(health_check)

    # Idempotent: already selected.
    if not apply_option_selection(item=item, option_id=option_id):
        return item

    record_event(
        db,
        health_check=health_check,
        event_type="repair_option_selected",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={
            "name": item.name,
            "optionId": str(option_id) if option_id else None,
            "optionName": item.selected_option.name if item.selected_option else None,
        },
    )
    refresh_health_check_totals(db, health_check=health_check)
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return item

