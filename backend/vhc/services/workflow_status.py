"""Health check lifecycle rules and derived workflow badges."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ..domain_errors import precondition_failed
from .store import flush_or_raise, load_authorizations, load_repair_items
from .timeline import record_status_change
from .completion import (
    COMPLETION_KINDS,
    STATUS_COMPLETE,
    STATUS_PARTIAL,
    STATUS_PENDING,
    aggregate_statuses,
    is_work_complete,
    latest_resolution,
    resolve_completion,
)
from .financials import (
    DECISION_APPROVED,
    DECISION_DECLINED,
    decidable_items,
    decision_map,
    item_decision,
    top_level_items,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "awaiting_arrival": {"awaiting_checkin", "created", "no_show", "cancelled"},
    "awaiting_checkin": {"created", "cancelled"},
    "no_show": {"awaiting_arrival", "cancelled"},
    "created": {"assigned", "cancelled"},
    "assigned": {"in_progress", "cancelled"},
    "in_progress": {"paused", "tech_completed", "cancelled"},
    "paused": {"in_progress", "tech_completed", "cancelled"},
    "tech_completed": {"awaiting_review", "awaiting_pricing", "cancelled"},
    "awaiting_review": {"awaiting_pricing", "ready_to_send", "cancelled"},
    "awaiting_pricing": {"awaiting_parts", "ready_to_send", "cancelled"},
    "awaiting_parts": {"ready_to_send", "cancelled"},
    "ready_to_send": {"sent", "cancelled"},
    "sent": {"sent", "opened", "partial_response", "authorized", "declined", "expired"},
    "opened": {"partial_response", "authorized", "declined", "expired"},
    "partial_response": {
        "sent", "opened", "partial_response", "authorized", "declined", "expired", "closed", "completed",
    },
    "authorized": {"sent", "opened", "partial_response", "declined", "closed", "completed"},
    "declined": {"sent", "opened", "partial_response", "authorized", "closed"},
    "expired": {"sent", "cancelled"},
    "completed": {"closed"},
    "closed": set(),
    "cancelled": set(),
}

PUBLISHABLE_STATUSES: set[str] = {"ready_to_send", "sent", "expired"}
DECIDED_STATUSES: set[str] = {"partial_response", "authorized", "declined"}
RESPONSE_STATUSES: set[str] = {"sent", "opened"} | DECIDED_STATUSES
CLOSABLE_STATUSES: set[str] = {"authorized", "declined", "partial_response", "completed"}
MARK_READY_STATUSES: set[str] = {"awaiting_review", "awaiting_pricing", "awaiting_parts"}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def validate_status_transition(*, current_status: str, next_status: str) -> str:
    """Return next_status when the table allows it, else raise before anything is mutated."""
    allowed = ALLOWED_TRANSITIONS.get(current_status, set())
    if next_status not in allowed:
        raise precondition_failed(
            "INVALID_STATUS_TRANSITION",
            f"Cannot change status from {current_status} to {next_status}",
            details={"from": current_status, "to": next_status},
        )
    return next_status


def derive_customer_response(repair_items: Iterable, authorizations: Iterable) -> Optional[str]:
    """Outcome status implied by decisions on decidable items; None when nothing is decided yet."""
    items = decidable_items(repair_items)
    decisions = decision_map(authorizations)
    outcomes = [item_decision(item, decisions) for item in items]

    if not outcomes or all(o is None for o in outcomes):
        return None
    if all(o == DECISION_APPROVED for o in outcomes):
        return "authorized"
    if all(o == DECISION_DECLINED for o in outcomes):
        return "declined"
    return "partial_response"


@dataclass(frozen=True)
class BadgeAttribution:
    at: Optional[datetime] = None
    by: Optional[Any] = None


@dataclass(frozen=True)
class WorkflowStatus:
    technician: str
    labour: str
    parts: str
    authorisation: str
    quote: str
    sent: str
    repair_item_count: int
    attribution: dict[str, BadgeAttribution] = field(default_factory=dict)


def _technician_badge(health_check) -> tuple[str, BadgeAttribution]:
    if health_check.tech_completed_at is not None:
        return STATUS_COMPLETE, BadgeAttribution(at=health_check.tech_completed_at, by=health_check.technician_id)
    if health_check.tech_started_at is not None:
        return "in_progress", BadgeAttribution(at=health_check.tech_started_at, by=health_check.technician_id)
    return STATUS_PENDING, BadgeAttribution()


def _authorisation_badge(repair_items: list, authorizations: list) -> tuple[str, BadgeAttribution]:
    items = decidable_items(repair_items)
    decisions = decision_map(authorizations)
    outcomes = [item_decision(item, decisions) for item in items]
    decided = [o for o in outcomes if o is not None]

    latest = max(
        (a for a in authorizations if a.decided_at is not None),
        key=lambda a: a.decided_at,
        default=None,
    )
    attribution = BadgeAttribution(
        at=latest.decided_at if latest else None,
        by=latest.decided_by_id if latest else None,
    )
    if not outcomes or not decided:
        return STATUS_PENDING, BadgeAttribution()
    if len(decided) == len(outcomes):
        return STATUS_COMPLETE, attribution
    return STATUS_PARTIAL, attribution


def compute_workflow_status(health_check, repair_items: Iterable, authorizations: Iterable) -> WorkflowStatus:
    """Badge snapshot recomputed from the rows passed in; never stored."""
    all_items = list(repair_items)
    auths = list(authorizations)
    items = top_level_items(all_items)

    attribution: dict[str, BadgeAttribution] = {}
    badges: dict[str, str] = {}

    technician, attribution["technician"] = _technician_badge(health_check)

    for kind in COMPLETION_KINDS:
        resolutions = [resolve_completion(item, kind) for item in items]
        badges[kind] = aggregate_statuses(resolutions)
        latest = latest_resolution(resolutions) if badges[kind] == STATUS_COMPLETE else None
        attribution[kind] = BadgeAttribution(at=latest.at, by=latest.by) if latest else BadgeAttribution()

    authorisation, attribution["authorisation"] = _authorisation_badge(all_items, auths)

    work_done = [is_work_complete(item) for item in items]
    if work_done and all(work_done):
        quote = STATUS_COMPLETE
    elif any(work_done) or badges["labour"] != STATUS_PENDING or badges["parts"] != STATUS_PENDING:
        quote = STATUS_PARTIAL
    else:
        quote = STATUS_PENDING

    sent = STATUS_COMPLETE if health_check.sent_at is not None else STATUS_PENDING
    attribution["sent"] = BadgeAttribution(at=health_check.sent_at)

    return WorkflowStatus(
        technician=technician,
        labour=badges["labour"],
        parts=badges["parts"],
        authorisation=authorisation,
        quote=quote,
        sent=sent,
        repair_item_count=len(items),
        attribution=attribution,
    )


def apply_status_change(
    db: Session,
    *,
    health_check,
    to_status: str,
    actor,
    source: str = "user",
    notes: Optional[str] = None,
) -> str:
    """Validate, set the new status and record history. Returns the previous status."""
    from_status = health_check.status
    validate_status_transition(current_status=from_status, next_status=to_status)
    health_check.status = to_status
    record_status_change(
        db,
        health_check=health_check,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        source=source,
        notes=notes,
    )
    return from_status


def sync_customer_response(db: Session, *, health_check, actor, source: str = "user") -> Optional[str]:
    """Re-derive the outcome status after a decision or item change; no-op outside the response window."""
    if health_check.status not in RESPONSE_STATUSES:
        return None

    flush_or_raise(db)
    items = load_repair_items(db=db, health_check_id=health_check.id)
    auths = load_authorizations(db=db, health_check_id=health_check.id)
    derived = derive_customer_response(items, auths)
    if derived is None and health_check.status in DECIDED_STATUSES:
        # Every decision withdrawn: back to waiting on the customer.
        derived = "opened" if health_check.first_opened_at is not None else "sent"
    if derived is None or derived == health_check.status:
        return None

    apply_status_change(db, health_check=health_check, to_status=derived, actor=actor, source=source)
    logger.info("Health check %s moved to %s from customer decisions", health_check.id, derived)
    return derived
