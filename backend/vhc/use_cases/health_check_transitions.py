"""Health check lifecycle use-cases: each transition is an explicit operation with its own preconditions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import not_found, precondition_failed
from ..models import CheckResult, HealthCheck, RepairItem, User
from ..security import require_permission
from ..services.completion import is_work_complete
from ..services.financials import (
    FinancialTotals,
    compute_totals,
    decidable_items,
    decision_map,
    effective_total,
    item_decision,
    top_level_items,
)
from ..services.notifications import (
    DeliveryResult,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
    build_publish_payload,
)
from ..services.public_tokens import is_token_expired, issue_public_token, token_expiry
from ..services.store import (
    commit_or_raise,
    load_authorizations,
    load_health_check,
    load_health_check_by_token,
    load_repair_items,
)
from ..services.timeline import record_event
from ..services.workflow_status import (
    CLOSABLE_STATUSES,
    MARK_READY_STATUSES,
    PUBLISHABLE_STATUSES,
    WorkflowStatus,
    apply_status_change,
    compute_workflow_status,
    now_utc,
    validate_status_transition,
)
from .repair_items import (
    generate_repair_items_from_check_results,
    generate_repair_items_from_mri_results,
    refresh_health_check_totals,
)

logger = logging.getLogger(__name__)


def _outbox_dispatcher(db: Session, health_check: HealthCheck) -> NotificationDispatcher:
    return OutboxNotificationDispatcher(db, org_id=health_check.org_id, health_check_id=health_check.id)


@dataclass
class WorkflowHooks:
    """Collaborators injected into transition use-cases."""

    dispatcher_factory: Callable[[Session, HealthCheck], NotificationDispatcher] = _outbox_dispatcher
    issue_token: Callable[[UUID, int], str] = issue_public_token
    now_utc: Callable[[], datetime] = now_utc


@dataclass(frozen=True)
class CheckinOutcome:
    health_check: HealthCheck
    generated_items: list[RepairItem] = field(default_factory=list)


@dataclass(frozen=True)
class InspectionOutcome:
    health_check: HealthCheck
    generated_items: list[RepairItem] = field(default_factory=list)


@dataclass(frozen=True)
class PublishOutcome:
    health_check: HealthCheck
    token: str
    expires_at: datetime
    deliveries: list[DeliveryResult] = field(default_factory=list)
    deduplicated: bool = False

    @property
    def degraded(self) -> bool:
        return any(not d.ok for d in self.deliveries)


@dataclass(frozen=True)
class CloseReadiness:
    """Advisory only; closing is never blocked by these lists."""

    undecided_items: list[UUID] = field(default_factory=list)
    incomplete_work_items: list[UUID] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.undecided_items or self.incomplete_work_items)


def _require_status(health_check: HealthCheck, allowed: set[str], action: str) -> None:
    if health_check.status not in allowed:
        raise precondition_failed(
            "INVALID_STATUS_FOR_ACTION",
            f"Cannot {action} while the health check is {health_check.status}",
            details={"status": health_check.status, "allowed": sorted(allowed)},
            http_status=409,
        )


def _required_text(value: Optional[str], *, code: str, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise precondition_failed(code, message)
    return text


# --- Arrival and check-in ---------------------------------------------------


def mark_arrived(
    *,
    db: Session,
    health_check_id: UUID,
    current_user: User,
    hooks: WorkflowHooks | None = None,
) -> HealthCheck:
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"awaiting_arrival"}, "mark the vehicle as arrived")

    next_status = "awaiting_checkin" if settings.CHECKIN_ENABLED else "created"
    health_check.arrived_at = hooks.now_utc()
    apply_status_change(db, health_check=health_check, to_status=next_status, actor=current_user, notes="Vehicle arrived")
    commit_or_raise(db)
    return health_check


def mark_no_show(*, db: Session, health_check_id: UUID, current_user: User) -> HealthCheck:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"awaiting_arrival"}, "mark a no-show")

    apply_status_change(db, health_check=health_check, to_status="no_show", actor=current_user, notes="Customer did not arrive")
    commit_or_raise(db)
    return health_check


def complete_checkin(
    *,
    db: Session,
    health_check_id: UUID,
    checkin_data: dict[str, Any] | None,
    current_user: User,
    generate_mri_items: bool = True,
    hooks: WorkflowHooks | None = None,
) -> CheckinOutcome:
    """Record check-in data, optionally turn flagged MRI results into repair items, and queue the inspection."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"awaiting_checkin"}, "complete check-in")
    if not checkin_data:
        raise precondition_failed("CHECKIN_DATA_REQUIRED", "Check-in data is required to complete check-in")

    health_check.checkin_data = checkin_data
    health_check.checked_in_at = hooks.now_utc()
    health_check.checked_in_by_id = current_user.id

    generated: list[RepairItem] = []
    if generate_mri_items and not health_check.mri_bypassed:
        generated = generate_repair_items_from_mri_results(db, health_check=health_check, actor=current_user)

    record_event(
        db,
        health_check=health_check,
        event_type="checkin_completed",
        actor=current_user,
        details={"mriItemsGenerated": len(generated)},
    )
    apply_status_change(db, health_check=health_check, to_status="created", actor=current_user)
    if generated:
        refresh_health_check_totals(db, health_check=health_check)
    commit_or_raise(db)
    return CheckinOutcome(health_check=health_check, generated_items=generated)


def skip_checkin(
    *,
    db: Session,
    health_check_id: UUID,
    reason: Optional[str],
    current_user: User,
) -> HealthCheck:
    """Admin escape hatch: bypass check-in, forfeiting MRI repair item generation."""
    require_permission(current_user, "canSkipCheckin")
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"awaiting_checkin"}, "skip check-in")
    reason_text = _required_text(reason, code="CHECKIN_SKIP_REASON_REQUIRED", message="A reason is required to skip check-in")

    health_check.mri_bypassed = True
    health_check.checkin_skipped_reason = reason_text
    record_event(
        db,
        health_check=health_check,
        event_type="checkin_skipped",
        actor=current_user,
        details={"reason": reason_text},
    )
    apply_status_change(db, health_check=health_check, to_status="created", actor=current_user, notes=reason_text)
    commit_or_raise(db)
    return health_check


# --- Inspection ---------------------------------------------------------------


def assign_technician(
    *,
    db: Session,
    health_check_id: UUID,
    technician_id: UUID,
    current_user: User,
) -> HealthCheck:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"created", "assigned"}, "assign a technician")

    technician = db.query(User).filter(
        User.id == technician_id,
        User.org_id == current_user.org_id,
        User.is_active == True,
    ).first()
    if not technician:
        raise not_found("TECHNICIAN_NOT_FOUND", "Technician not found")

    # Idempotent: same technician already assigned.
    if health_check.status == "assigned" and health_check.technician_id == technician.id:
        return health_check

    health_check.technician_id = technician.id
    if health_check.status == "created":
        apply_status_change(
            db,
            health_check=health_check,
            to_status="assigned",
            actor=current_user,
            notes=f"Assigned to {technician.name}",
        )
    commit_or_raise(db)
    return health_check


def start_inspection(
    *,
    db: Session,
    health_check_id: UUID,
    current_user: User,
    hooks: WorkflowHooks | None = None,
) -> HealthCheck:
    """Technician clock-in; the first start stamps tech_started_at."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"assigned", "paused"}, "start the inspection")

    if health_check.technician_id is None:
        health_check.technician_id = current_user.id
    if health_check.tech_started_at is None:
        health_check.tech_started_at = hooks.now_utc()
    apply_status_change(db, health_check=health_check, to_status="in_progress", actor=current_user)
    commit_or_raise(db)
    return health_check


def pause_inspection(*, db: Session, health_check_id: UUID, current_user: User) -> HealthCheck:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"in_progress"}, "pause the inspection")

    apply_status_change(db, health_check=health_check, to_status="paused", actor=current_user)
    commit_or_raise(db)
    return health_check


def _count_rag(db: Session, *, health_check: HealthCheck) -> dict[str, int]:
    counts = {"red": 0, "amber": 0, "green": 0}
    results = db.query(CheckResult).filter(CheckResult.health_check_id == health_check.id).all()
    for result in results:
        if result.rag_status in counts:
            counts[result.rag_status] += 1
    return counts


def complete_inspection(
    *,
    db: Session,
    health_check_id: UUID,
    current_user: User,
    hooks: WorkflowHooks | None = None,
) -> InspectionOutcome:
    """Technician finished: stamp completion, recount RAG results and generate repair items."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"in_progress", "paused"}, "complete the inspection")

    counts = _count_rag(db, health_check=health_check)
    health_check.red_count = counts["red"]
    health_check.amber_count = counts["amber"]
    health_check.green_count = counts["green"]
    health_check.tech_completed_at = hooks.now_utc()

    generated = generate_repair_items_from_check_results(db, health_check=health_check, actor=current_user)
    apply_status_change(db, health_check=health_check, to_status="tech_completed", actor=current_user)
    refresh_health_check_totals(db, health_check=health_check)
    commit_or_raise(db)
    return InspectionOutcome(health_check=health_check, generated_items=generated)


# --- Advisor review --------------------------------------------------------------


def start_review(*, db: Session, health_check_id: UUID, current_user: User) -> HealthCheck:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"tech_completed"}, "start the review")
    if health_check.tech_completed_at is None:
        raise precondition_failed(
            "TECHNICIAN_NOT_COMPLETE",
            "The technician has not completed the inspection yet",
            http_status=409,
        )

    apply_status_change(db, health_check=health_check, to_status="awaiting_pricing", actor=current_user)
    commit_or_raise(db)
    return health_check


def mark_ready(*, db: Session, health_check_id: UUID, current_user: User) -> HealthCheck:
    """Advisor discretion: ready once some pricing exists. Individual items may still be unpriced."""
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, MARK_READY_STATUSES, "mark ready to send")

    items = top_level_items(load_repair_items(db=db, health_check_id=health_check.id))
    if items and not any(effective_total(item) > 0 for item in items):
        raise precondition_failed(
            "PRICING_REQUIRED",
            "Price at least one repair item before marking ready to send",
            http_status=409,
        )

    apply_status_change(db, health_check=health_check, to_status="ready_to_send", actor=current_user)
    commit_or_raise(db)
    return health_check


# --- Publishing -------------------------------------------------------------------


def _resolve_expiry_days(expiry_days: Optional[int]) -> int:
    days = expiry_days if expiry_days is not None else settings.PUBLIC_LINK_DEFAULT_EXPIRY_DAYS
    options = settings.public_link_expiry_options
    if days not in options:
        raise precondition_failed(
            "INVALID_LINK_EXPIRY",
            f"Link expiry must be one of {', '.join(str(o) for o in options)} days",
            details={"expiryDays": days, "allowed": options},
        )
    return days


def _ensure_contact_details(health_check: HealthCheck, *, send_email: bool, send_sms: bool) -> None:
    if not send_email and not send_sms:
        raise precondition_failed("NO_DELIVERY_CHANNEL", "Choose email, SMS or both to send the health check")

    customer = health_check.customer
    if send_email and not (customer and customer.email):
        raise precondition_failed("CUSTOMER_EMAIL_MISSING", "Customer has no email address")
    if send_sms and not (customer and customer.mobile):
        raise precondition_failed("CUSTOMER_MOBILE_MISSING", "Customer has no mobile number")


def _is_duplicate_publish(health_check: HealthCheck, *, days: int, at: datetime) -> bool:
    if health_check.status != "sent" or not health_check.public_token or health_check.sent_at is None:
        return False
    if health_check.token_expiry_days != days:
        return False
    return (at - health_check.sent_at).total_seconds() < settings.PUBLISH_DEDUP_WINDOW_SECONDS


def _safe_send(send: Callable[[str, dict[str, Any]], DeliveryResult], *, channel: str, to: str, payload: dict) -> DeliveryResult:
    try:
        return send(to, payload)
    except Exception as exc:  # delivery never undoes a committed publish
        logger.exception("Notification dispatch raised for %s %s", channel, to)
        return DeliveryResult(channel=channel, recipient=to, ok=False, error=str(exc))


def _dispatch(
    db: Session,
    *,
    health_check: HealthCheck,
    hooks: WorkflowHooks,
    send_email: bool,
    send_sms: bool,
    payload: dict[str, Any],
    current_user: User,
) -> list[DeliveryResult]:
    dispatcher = hooks.dispatcher_factory(db, health_check)
    customer = health_check.customer
    deliveries: list[DeliveryResult] = []
    if send_email:
        deliveries.append(_safe_send(dispatcher.send_email, channel="email", to=customer.email, payload=payload))
    if send_sms:
        deliveries.append(_safe_send(dispatcher.send_sms, channel="sms", to=customer.mobile, payload=payload))

    for delivery in deliveries:
        if not delivery.ok:
            logger.warning(
                "Delivery failed for health check %s via %s: %s",
                health_check.id, delivery.channel, delivery.error,
            )
            record_event(
                db,
                health_check=health_check,
                event_type="notification_failed",
                actor=current_user,
                details={"channel": delivery.channel, "recipient": delivery.recipient, "error": delivery.error},
            )

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not persist notification dispatch for health check %s", health_check.id)
        deliveries = [
            d if not d.ok else replace(d, ok=False, error="QUEUE_COMMIT_FAILED")
            for d in deliveries
        ]
    return deliveries


def publish_health_check(
    *,
    db: Session,
    health_check_id: UUID,
    send_email: bool,
    send_sms: bool,
    current_user: User,
    expiry_days: Optional[int] = None,
    custom_message: Optional[str] = None,
    hooks: WorkflowHooks | None = None,
) -> PublishOutcome:
    """Send (or resend) the health check to the customer with a fresh link.

    The status change is committed before notifications go out; delivery
    failures are returned on the outcome and written to the timeline.
    """
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, PUBLISHABLE_STATUSES, "send to the customer")
    _ensure_contact_details(health_check, send_email=send_email, send_sms=send_sms)
    days = _resolve_expiry_days(expiry_days)

    at = hooks.now_utc()
    if _is_duplicate_publish(health_check, days=days, at=at):
        logger.info("Duplicate publish for health check %s within dedup window", health_check.id)
        return PublishOutcome(
            health_check=health_check,
            token=health_check.public_token,
            expires_at=health_check.token_expires_at,
            deduplicated=True,
        )

    resend = health_check.status != "ready_to_send"
    token = hooks.issue_token(health_check.id, days)
    expires_at = token_expiry(issued_at=at, expires_in_days=days)
    health_check.public_token = token
    health_check.token_expires_at = expires_at
    health_check.token_expiry_days = days
    health_check.sent_at = at

    channels = [c for c, enabled in (("email", send_email), ("sms", send_sms)) if enabled]
    record_event(
        db,
        health_check=health_check,
        event_type="sent_to_customer",
        actor=current_user,
        details={"channels": channels, "expiryDays": days, "resend": resend},
    )
    apply_status_change(db, health_check=health_check, to_status="sent", actor=current_user)
    commit_or_raise(db)
    logger.info("Health check %s sent via %s (expires in %s days)", health_check.id, ",".join(channels), days)

    payload = build_publish_payload(
        health_check=health_check,
        customer=health_check.customer,
        token=token,
        expires_at=expires_at,
        custom_message=custom_message,
    )
    deliveries = _dispatch(
        db,
        health_check=health_check,
        hooks=hooks,
        send_email=send_email,
        send_sms=send_sms,
        payload=payload,
        current_user=current_user,
    )
    return PublishOutcome(health_check=health_check, token=token, expires_at=expires_at, deliveries=deliveries)


def record_unable_to_send(
    *,
    db: Session,
    health_check_id: UUID,
    reason: Optional[str],
    current_user: User,
    hooks: WorkflowHooks | None = None,
) -> HealthCheck:
    """Record why the health check could not be sent; the status does not move."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, PUBLISHABLE_STATUSES | MARK_READY_STATUSES, "record unable to send")
    reason_text = _required_text(reason, code="UNABLE_TO_SEND_REASON_REQUIRED", message="A reason is required")

    health_check.unable_to_send_reason = reason_text
    health_check.unable_to_send_at = hooks.now_utc()
    record_event(
        db,
        health_check=health_check,
        event_type="unable_to_send",
        actor=current_user,
        details={"reason": reason_text},
    )
    commit_or_raise(db)
    return health_check


# --- Customer link ------------------------------------------------------------------


def record_opened(*, db: Session, token: str, hooks: WorkflowHooks | None = None) -> HealthCheck:
    """Customer opened the link: first view stamps first_opened_at and moves sent -> opened."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check_by_token(db=db, token=token, for_update=True)
    at = hooks.now_utc()
    if is_token_expired(health_check, at=at):
        raise precondition_failed("PUBLIC_LINK_EXPIRED", "This link has expired", http_status=410)

    changed = False
    if health_check.first_opened_at is None:
        health_check.first_opened_at = at
        record_event(
            db,
            health_check=health_check,
            event_type="customer_opened",
            actor=None,
            details={},
            actor_fallback="Customer",
        )
        changed = True
    if health_check.status == "sent":
        apply_status_change(db, health_check=health_check, to_status="opened", actor=None, source="customer")
        changed = True
    if changed:
        commit_or_raise(db)
    return health_check


def expire_health_check(db: Session, *, health_check: HealthCheck, at: datetime) -> bool:
    """Move a health check whose link lapsed to expired. No commit; returns True when changed."""
    if health_check.status not in {"sent", "opened", "partial_response"}:
        return False
    if not is_token_expired(health_check, at=at):
        return False
    apply_status_change(db, health_check=health_check, to_status="expired", actor=None, source="system", notes="Link expired")
    return True


# --- Work completion and closure ---------------------------------------------------


def complete_work(*, db: Session, health_check_id: UUID, current_user: User) -> HealthCheck:
    """Authorised work is finished: every approved item has labour and parts complete."""
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, {"authorized", "partial_response"}, "complete the work")

    totals = compute_totals(
        load_repair_items(db=db, health_check_id=health_check.id),
        load_authorizations(db=db, health_check_id=health_check.id),
    )
    if totals.outstanding_value > 0:
        raise precondition_failed(
            "AUTHORISED_WORK_OUTSTANDING",
            "Authorised work still has labour or parts outstanding",
            details={"outstandingValue": str(totals.outstanding_value)},
            http_status=409,
        )

    apply_status_change(db, health_check=health_check, to_status="completed", actor=current_user)
    commit_or_raise(db)
    return health_check


def close_health_check(
    *,
    db: Session,
    health_check_id: UUID,
    current_user: User,
    hooks: WorkflowHooks | None = None,
) -> HealthCheck:
    """Irreversible: stamps closed_at and closed_by_id."""
    hooks = hooks or WorkflowHooks()
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    _require_status(health_check, CLOSABLE_STATUSES, "close the health check")

    health_check.closed_at = hooks.now_utc()
    health_check.closed_by_id = current_user.id
    apply_status_change(db, health_check=health_check, to_status="closed", actor=current_user)
    commit_or_raise(db)
    return health_check


def cancel_health_check(
    *,
    db: Session,
    health_check_id: UUID,
    reason: Optional[str],
    current_user: User,
) -> HealthCheck:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id, for_update=True)
    reason_text = _required_text(reason, code="CANCEL_REASON_REQUIRED", message="A reason is required to cancel")
    validate_status_transition(current_status=health_check.status, next_status="cancelled")

    health_check.cancelled_reason = reason_text
    apply_status_change(db, health_check=health_check, to_status="cancelled", actor=current_user, notes=reason_text)
    commit_or_raise(db)
    return health_check


# --- Read models -----------------------------------------------------------------------


def get_workflow_status(*, db: Session, health_check_id: UUID, current_user: User) -> WorkflowStatus:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    return compute_workflow_status(
        health_check,
        load_repair_items(db=db, health_check_id=health_check.id),
        load_authorizations(db=db, health_check_id=health_check.id),
    )


def get_financial_summary(*, db: Session, health_check_id: UUID, current_user: User) -> FinancialTotals:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    return compute_totals(
        load_repair_items(db=db, health_check_id=health_check.id),
        load_authorizations(db=db, health_check_id=health_check.id),
    )


def evaluate_close_readiness(*, db: Session, health_check_id: UUID, current_user: User) -> CloseReadiness:
    health_check = load_health_check(db=db, health_check_id=health_check_id, org_id=current_user.org_id)
    items = load_repair_items(db=db, health_check_id=health_check.id)
    decisions = decision_map(load_authorizations(db=db, health_check_id=health_check.id))

    undecided = [item.id for item in decidable_items(items) if item_decision(item, decisions) is None]
    incomplete = [
        item.id
        for item in top_level_items(items)
        if item_decision(item, decisions) == "approved" and not is_work_complete(item)
    ]
    return CloseReadiness(undecided_items=undecided, incomplete_work_items=incomplete)
