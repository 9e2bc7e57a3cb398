"""Loaders and commit helper shared by the use-cases."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import CollaboratorFailure, conflict, not_found
from ..models import HealthCheck, RepairItem, RepairItemAuthorization, RepairOption

logger = logging.getLogger(__name__)


def load_health_check(
    *,
    db: Session,
    health_check_id: UUID,
    org_id: UUID,
    for_update: bool = False,
) -> HealthCheck:
    query = db.query(HealthCheck).filter(
        HealthCheck.id == health_check_id,
        HealthCheck.org_id == org_id,
        HealthCheck.deleted_at == None,
    )
    if for_update:
        query = query.with_for_update()
    health_check = query.first()
    if not health_check:
        raise not_found("HEALTH_CHECK_NOT_FOUND", "Health check not found")
    return health_check


def load_health_check_by_token(*, db: Session, token: str, for_update: bool = False) -> HealthCheck:
    query = db.query(HealthCheck).filter(
        HealthCheck.public_token == token,
        HealthCheck.deleted_at == None,
    )
    if for_update:
        query = query.with_for_update()
    health_check = query.first()
    if not health_check:
        raise not_found("PUBLIC_LINK_NOT_FOUND", "This link is not valid")
    return health_check


def load_repair_item(
    *,
    db: Session,
    repair_item_id: UUID,
    org_id: UUID,
    allow_deleted: bool = False,
) -> RepairItem:
    """Fetch a repair item in the caller's organization; deleted items raise a conflict unless allowed."""
    item = db.query(RepairItem).filter(
        RepairItem.id == repair_item_id,
        RepairItem.org_id == org_id,
    ).first()
    if not item:
        raise not_found("REPAIR_ITEM_NOT_FOUND", "Repair item not found")
    if item.deleted_at is not None and not allow_deleted:
        raise conflict(
            "REPAIR_ITEM_DELETED",
            "Repair item has been deleted",
            details={"repairItemId": str(item.id)},
        )
    return item


def load_repair_option(*, db: Session, repair_option_id: UUID, org_id: UUID) -> tuple[RepairOption, RepairItem]:
    """Fetch an option together with its (live, same-tenant) repair item."""
    option = db.query(RepairOption).filter(RepairOption.id == repair_option_id).first()
    if not option:
        raise not_found("REPAIR_OPTION_NOT_FOUND", "Repair option not found")
    item = load_repair_item(db=db, repair_item_id=option.repair_item_id, org_id=org_id)
    return option, item


def load_repair_items(*, db: Session, health_check_id: UUID) -> list[RepairItem]:
    return (
        db.query(RepairItem)
        .filter(
            RepairItem.health_check_id == health_check_id,
            RepairItem.deleted_at == None,
        )
        .order_by(RepairItem.sort_order)
        .all()
    )


def load_authorizations(*, db: Session, health_check_id: UUID) -> list[RepairItemAuthorization]:
    return db.query(RepairItemAuthorization).filter(
        RepairItemAuthorization.health_check_id == health_check_id,
    ).all()


def _write_or_raise(db: Session, write, action: str) -> None:
    try:
        write()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity error on %s: %s", action, exc.orig)
        raise conflict("CONSTRAINT_VIOLATION", "The change conflicts with existing data") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Persistence failure on %s", action)
        raise CollaboratorFailure(
            code="PERSISTENCE_FAILURE",
            http_status=503,
            message="Could not save changes, please retry",
        ) from exc


def flush_or_raise(db: Session) -> None:
    """Flush pending writes mid unit of work; failures roll back like a failed commit."""
    _write_or_raise(db, db.flush, "flush")


def commit_or_raise(db: Session) -> None:
    """Commit the unit of work; on failure roll back and raise a typed error."""
    _write_or_raise(db, db.commit, "commit")
