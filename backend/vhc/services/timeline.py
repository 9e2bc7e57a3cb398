"""Timeline (audit) and status history rows, added inside the caller's unit of work."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditEvent, HealthCheck, HealthCheckStatusHistory, User


CUSTOMER_ACTOR_NAME = "Customer"
SYSTEM_ACTOR_NAME = "System"


def _actor_name(actor: Optional[User], fallback: str) -> str:
    if actor is None:
        return fallback
    return actor.name or actor.initials


def record_event(
    db: Session,
    *,
    health_check: HealthCheck,
    event_type: str,
    actor: Optional[User],
    entity_type: str = "health_check",
    entity_id=None,
    details: Optional[dict[str, Any]] = None,
    actor_fallback: str = SYSTEM_ACTOR_NAME,
) -> AuditEvent:
    event = AuditEvent(
        org_id=health_check.org_id,
        health_check_id=health_check.id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id or health_check.id,
        user_id=actor.id if actor else None,
        user_name=_actor_name(actor, actor_fallback),
        details=details or {},
    )
    db.add(event)
    return event


def record_status_change(
    db: Session,
    *,
    health_check: HealthCheck,
    from_status: Optional[str],
    to_status: str,
    actor: Optional[User],
    source: str = "user",
    notes: Optional[str] = None,
) -> None:
    db.add(
        HealthCheckStatusHistory(
            health_check_id=health_check.id,
            from_status=from_status,
            to_status=to_status,
            changed_by_id=actor.id if actor else None,
            change_source=source,
            notes=notes,
        )
    )
    record_event(
        db,
        health_check=health_check,
        event_type="status_changed",
        actor=actor,
        details={"oldStatus": from_status, "newStatus": to_status, "notes": notes},
        actor_fallback=CUSTOMER_ACTOR_NAME if source == "customer" else SYSTEM_ACTOR_NAME,
    )
