"""Customer decision ledger: one current decision per repair item."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import conflict, precondition_failed
from ..models import HealthCheck, RepairItem, RepairItemAuthorization, User
from ..services.financials import DECISION_APPROVED, DECISION_DECLINED
from ..services.public_tokens import is_token_expired
from ..services.store import (
    commit_or_raise,
    load_health_check,
    load_health_check_by_token,
    load_repair_item,
)
from ..services.timeline import record_event
from ..services.workflow_status import now_utc, sync_customer_response
from .repair_items import refresh_health_check_totals
from .repair_options import apply_option_selection


DECISIONS: set[str] = {DECISION_APPROVED, DECISION_DECLINED}
_DECISION_EVENTS: dict[str, str] = {
    DECISION_APPROVED: "outcome_authorised",
    DECISION_DECLINED: "outcome_declined",
}
_DECISION_LOCKED_STATUSES: set[str] = {"completed", "closed", "cancelled"}


def get_decision(*, db: Session, repair_item_id: UUID) -> Optional[RepairItemAuthorization]:
    """Current decision, or None when the item is still pending."""
    return db.query(RepairItemAuthorization).filter(
        RepairItemAuthorization.repair_item_id == repair_item_id,
    ).first()


def _ensure_decidable(*, health_check: HealthCheck, item: RepairItem) -> None:
    if health_check.status in _DECISION_LOCKED_STATUSES:
        raise precondition_failed(
            "HEALTH_CHECK_LOCKED",
            f"Decisions cannot be changed while the health check is {health_check.status}",
            http_status=409,
        )
    if item.health_check_id != health_check.id:
        raise conflict("REPAIR_ITEM_HEALTH_CHECK_MISMATCH", "Repair item belongs to another health check")


def _write_decision(
    db: Session,
    *,
    health_check: HealthCheck,
    item: RepairItem,
    decision: str,
    actor: Optional[User],
    source: str,
    at: datetime,
    notes: Optional[str] = None,
    signature: Optional[str] = None,
    declined_reason: Optional[str] = None,
) -> RepairItemAuthorization:
    if decision not in DECISIONS:
        raise precondition_failed(
            "INVALID_DECISION",
            "Decision must be approved or declined",
            details={"decision": decision},
        )

    auth = get_decision(db=db, repair_item_id=item.id)
    previous = auth.decision if auth else None
    if auth is None:
        auth = RepairItemAuthorization(repair_item_id=item.id, health_check_id=health_check.id)
        db.add(auth)

    auth.decision = decision
    auth.decided_at = at
    auth.source = source
    auth.decided_by_id = actor.id if actor else None
    auth.customer_notes = notes
    auth.signature_data = signature
    auth.declined_reason = declined_reason if decision == DECISION_DECLINED else None

    record_event(
        db,
        health_check=health_check,
        event_type=_DECISION_EVENTS[decision],
        actor=actor,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "previousDecision": previous, "source": source, "notes": notes},
        actor_fallback="Customer",
    )
    return auth


def _choose_option(
    db: Session,
    *,
    health_check: HealthCheck,
    item: RepairItem,
    decision: str,
    option_id: Optional[UUID],
    actor: Optional[User],
) -> None:
    """Approving may pick which of the item's options is being approved."""
    if option_id is None:
        return
    if decision != DECISION_APPROVED:
        raise precondition_failed("OPTION_REQUIRES_APPROVAL", "An option can only be chosen when approving")
    if not apply_option_selection(item=item, option_id=option_id):
        return
    record_event(
        db,
        health_check=health_check,
        event_type="repair_option_selected",
        actor=actor,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "optionId": str(option_id), "optionName": item.selected_option.name},
        actor_fallback="Customer",
    )
    refresh_health_check_totals(db, health_check=health_check)


def record_decision(
    *,
    db: Session,
    repair_item_id: UUID,
    decision: str,
    current_user: User,
    notes: Optional[str] = None,
    signature: Optional[str] = None,
    declined_reason: Optional[str] = None,
    selected_option_id: Optional[UUID] = None,
) -> RepairItemAuthorization:
    """Record (or replace) a decision on the customer's behalf."""
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = load_health_check(
        db=db,
        health_check_id=item.health_check_id,
        org_id=current_user.org_id,
        for_update=True,
    )
    _ensure_decidable(health_check=health_check, item=item)

    auth = _write_decision(
        db,
        health_check=health_check,
        item=item,
        decision=decision,
        actor=current_user,
        source="advisor",
        at=now_utc(),
        notes=notes,
        signature=signature,
        declined_reason=declined_reason,
    )
    _choose_option(
        db,
        health_check=health_check,
        item=item,
        decision=decision,
        option_id=selected_option_id,
        actor=current_user,
    )
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return auth


def reset_decision(*, db: Session, repair_item_id: UUID, current_user: User) -> RepairItem:
    """Return an item to pending."""
    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=current_user.org_id)
    health_check = load_health_check(
        db=db,
        health_check_id=item.health_check_id,
        org_id=current_user.org_id,
        for_update=True,
    )
    _ensure_decidable(health_check=health_check, item=item)

    auth = get_decision(db=db, repair_item_id=item.id)
    # Idempotent: already pending.
    if auth is None:
        return item

    previous = auth.decision
    db.delete(auth)
    record_event(
        db,
        health_check=health_check,
        event_type="outcome_reset",
        actor=current_user,
        entity_type="repair_item",
        entity_id=item.id,
        details={"name": item.name, "previousDecision": previous},
    )
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return item


def bulk_record_decisions(
    *,
    db: Session,
    health_check_id: UUID,
    repair_item_ids: list[UUID],
    decision: str,
    current_user: User,
    notes: Optional[str] = None,
) -> list[RepairItemAuthorization]:
    """Apply one decision to several items of a health check; any invalid item rejects the whole batch."""
    health_check = load_health_check(
        db=db,
        health_check_id=health_check_id,
        org_id=current_user.org_id,
        for_update=True,
    )
    if not repair_item_ids:
        raise precondition_failed("NO_REPAIR_ITEMS", "Select at least one repair item")

    items = [
        load_repair_item(db=db, repair_item_id=item_id, org_id=current_user.org_id)
        for item_id in dict.fromkeys(repair_item_ids)
    ]
    for item in items:
        _ensure_decidable(health_check=health_check, item=item)

    at = now_utc()
    auths = [
        _write_decision(
            db,
            health_check=health_check,
            item=item,
            decision=decision,
            actor=current_user,
            source="advisor",
            at=at,
            notes=notes,
        )
        for item in items
    ]
    sync_customer_response(db, health_check=health_check, actor=current_user)
    commit_or_raise(db)
    return auths


def record_customer_decision(
    *,
    db: Session,
    token: str,
    repair_item_id: UUID,
    decision: str,
    notes: Optional[str] = None,
    signature: Optional[str] = None,
    declined_reason: Optional[str] = None,
    selected_option_id: Optional[UUID] = None,
) -> RepairItemAuthorization:
    """Decision submitted by the customer through the public link."""
    health_check = load_health_check_by_token(db=db, token=token, for_update=True)
    at = now_utc()
    if is_token_expired(health_check, at=at):
        raise precondition_failed("PUBLIC_LINK_EXPIRED", "This link has expired", http_status=410)

    item = load_repair_item(db=db, repair_item_id=repair_item_id, org_id=health_check.org_id)
    _ensure_decidable(health_check=health_check, item=item)
    if not item.is_visible or item.parent_repair_item_id is not None:
        raise precondition_failed("REPAIR_ITEM_NOT_DECIDABLE", "This item is not available for a decision")

    auth = _write_decision(
        db,
        health_check=health_check,
        item=item,
        decision=decision,
        actor=None,
        source="customer",
        at=at,
        notes=notes,
        signature=signature,
        declined_reason=declined_reason,
    )
    _choose_option(db, health_check=health_check, item=item, decision=decision, option_id=selected_option_id, actor=None)
    sync_customer_response(db, health_check=health_check, actor=None, source="customer")
    commit_or_raise(db)
    return auth
