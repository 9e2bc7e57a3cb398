"""Labour/parts completion markers on repair items."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import precondition_failed
from ..models import RepairItem, User
from ..services.store import commit_or_raise, load_health_check, load_repair_item
from ..services.timeline import record_event
from ..services.workflow_status import now_utc


_LOCKED_STATUSES: set[str] = {"closed", "cancelled"}


def _load_for_completion(*, db: Session, repair_item_id: UUID, current_user: User):
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = load_health_check(db=db, health_check_id=item.health_check_id, org_id=current_user.org_id)
    if health_check.status in _LOCKED_STATUSES:
        raise precondition_failed(
            "HEALTH_CHECK_LOCKED",
            f"Completion cannot be changed while the health check is {health_check.status}",
            http_status=409,
        )
    return item, health_check


def _set_marker(
    *,
    db: Session,
    repair_item_id: UUID,
    kind: str,
    current_user: User,
    event_type: str,
) -> RepairItem:
    item, health_check = _load_for_completion(db=db, repair_item_id=repair_item_id, current_user=current_user)

    # Idempotent: keep the original actor and timestamp.
    if getattr(item, f"{kind}_completed_at") is not None:
        return item

    setattr(item, f"{kind}_completed_at", now_utc())
    setattr(item, f"{kind}_completed_by_id", current_user.id)
    record_event(
        db,
        health_check=health_check,
        event_type=event_type,
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name},
    )
    commit_or_raise(db)
    return item


def _clear_marker(
    *,
    db: Session,
    repair_item_id: UUID,
    kind: str,
    current_user: User,
    event_type: str,
) -> RepairItem:
    item, health_check = _load_for_completion(db=db, repair_item_id=repair_item_id, current_user=current_user)
    if getattr(item, f"{kind}_completed_at") is None:
        return item

    setattr(item, f"{kind}_completed_at", None)
    setattr(item, f"{kind}_completed_by_id", None)
    record_event(
        db,
        health_check=health_check,
        event_type=event_type,
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name},
    )
    commit_or_raise(db)
    return item


def _set_not_required(
    *,
    db: Session,
    repair_item_id: UUID,
    kind: str,
    value: bool,
    current_user: User,
    event_type: str,
) -> RepairItem:
    item, health_check = _load_for_completion(db=db, repair_item_id=repair_item_id, current_user=current_user)
    if bool(getattr(item, f"no_{kind}_required")) == value:
        return item

    entries = item.labour_entries if kind == "labour" else item.part_entries
    if value and entries:
        raise precondition_failed(
            f"{kind.upper()}_LINES_PRESENT",
            f"Remove existing {kind} lines before marking {kind} as not required",
            http_status=409,
        )

    setattr(item, f"no_{kind}_required", value)
    setattr(item, f"no_{kind}_required_at", now_utc() if value else None)
    setattr(item, f"no_{kind}_required_by_id", current_user.id if value else None)
    record_event(
        db,
        health_check=health_check,
        event_type=event_type,
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name},
    )
    commit_or_raise(db)
    return item


def mark_labour_complete(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_marker(db=db, repair_item_id=repair_item_id, kind="labour", current_user=current_user,
                       event_type="labour_completed")


def mark_parts_complete(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_marker(db=db, repair_item_id=repair_item_id, kind="parts", current_user=current_user,
                       event_type="parts_completed")


def undo_labour_complete(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _clear_marker(db=db, repair_item_id=repair_item_id, kind="labour", current_user=current_user,
                         event_type="labour_completion_undone")


def undo_parts_complete(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _clear_marker(db=db, repair_item_id=repair_item_id, kind="parts", current_user=current_user,
                         event_type="parts_completion_undone")


def mark_no_labour_required(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_not_required(db=db, repair_item_id=repair_item_id, kind="labour", value=True,
                             current_user=current_user, event_type="no_labour_required")


def mark_no_parts_required(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_not_required(db=db, repair_item_id=repair_item_id, kind="parts", value=True,
                             current_user=current_user, event_type="no_parts_required")


def clear_no_labour_required(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_not_required(db=db, repair_item_id=repair_item_id, kind="labour", value=False,
                             current_user=current_user, event_type="no_labour_required_cleared")


def clear_no_parts_required(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    return _set_not_required(db=db, repair_item_id=repair_item_id, kind="parts", value=False,
                             current_user=current_user, event_type="no_parts_required_cleared")
