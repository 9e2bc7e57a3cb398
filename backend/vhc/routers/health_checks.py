"""Health check lifecycle endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    AssignTechnicianRequest,
    BulkDecisionRequest,
    CheckinRequest,
    CheckinResponse,
    CloseReadinessResponse,
    FinancialSummaryResponse,
    HealthCheckResponse,
    PublishRequest,
    PublishResponse,
    ReasonRequest,
    AuthorizationResponse,
    RepairItemCreate,
    RepairItemFromCheckResultRequest,
    RepairItemResponse,
    RepairGroupCreate,
    WorkflowStatusResponse,
)
from ..services.notifications import build_public_link
from ..use_cases import health_check_transitions as transitions
from ..use_cases.authorizations import bulk_record_decisions
from ..use_cases.repair_items import (
    create_manual_repair_item,
    create_repair_group,
    create_repair_item_from_check_result,
)

router = APIRouter(prefix="/health-checks", tags=["health-checks"])


@router.post("/{health_check_id}/arrived", response_model=HealthCheckResponse)
def mark_arrived(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.mark_arrived(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post("/{health_check_id}/no-show", response_model=HealthCheckResponse)
def mark_no_show(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.mark_no_show(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post("/{health_check_id}/checkin", response_model=CheckinResponse)
def complete_checkin(
    health_check_id: UUID,
    data: CheckinRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Complete check-in, optionally generating MRI repair items."""
    outcome = transitions.complete_checkin(
        db=db,
        health_check_id=health_check_id,
        checkin_data=data.checkin_data,
        generate_mri_items=data.generate_mri_items,
        current_user=current_user,
    )
    return CheckinResponse(
        health_check=HealthCheckResponse.model_validate(outcome.health_check),
        generated_item_ids=[item.id for item in outcome.generated_items],
    )


@router.post("/{health_check_id}/skip-checkin", response_model=HealthCheckResponse)
def skip_checkin(
    health_check_id: UUID,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.skip_checkin(
        db=db, health_check_id=health_check_id, reason=data.reason, current_user=current_user
    )


@router.post("/{health_check_id}/assign", response_model=HealthCheckResponse)
def assign_technician(
    health_check_id: UUID,
    data: AssignTechnicianRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.assign_technician(
        db=db, health_check_id=health_check_id, technician_id=data.technician_id, current_user=current_user
    )


@router.post(
    "/{health_check_id}/clock-in",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canInspect"))],
)
def start_inspection(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.start_inspection(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/pause",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canInspect"))],
)
def pause_inspection(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.pause_inspection(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/complete-inspection",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canInspect"))],
)
def complete_inspection(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    outcome = transitions.complete_inspection(db=db, health_check_id=health_check_id, current_user=current_user)
    return outcome.health_check


@router.post(
    "/{health_check_id}/start-review",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canPrice"))],
)
def start_review(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.start_review(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/mark-ready",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canPrice"))],
)
def mark_ready(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.mark_ready(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/publish",
    response_model=PublishResponse,
    dependencies=[Depends(PermissionChecker("canSendToCustomer"))],
)
def publish(
    health_check_id: UUID,
    data: PublishRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Send or resend the health check; delivery problems come back as degraded."""
    outcome = transitions.publish_health_check(
        db=db,
        health_check_id=health_check_id,
        send_email=data.send_email,
        send_sms=data.send_sms,
        expiry_days=data.expiry_days,
        custom_message=data.custom_message,
        current_user=current_user,
    )
    return PublishResponse(
        health_check=HealthCheckResponse.model_validate(outcome.health_check),
        public_url=build_public_link(outcome.token),
        expires_at=outcome.expires_at,
        deliveries=[vars(d) for d in outcome.deliveries],
        degraded=outcome.degraded,
        deduplicated=outcome.deduplicated,
    )


@router.post(
    "/{health_check_id}/unable-to-send",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canSendToCustomer"))],
)
def unable_to_send(
    health_check_id: UUID,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.record_unable_to_send(
        db=db, health_check_id=health_check_id, reason=data.reason, current_user=current_user
    )


@router.post(
    "/{health_check_id}/complete",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canCloseHealthChecks"))],
)
def complete_work(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.complete_work(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/close",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canCloseHealthChecks"))],
)
def close(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.close_health_check(db=db, health_check_id=health_check_id, current_user=current_user)


@router.post(
    "/{health_check_id}/cancel",
    response_model=HealthCheckResponse,
    dependencies=[Depends(PermissionChecker("canCancelHealthChecks"))],
)
def cancel(
    health_check_id: UUID,
    data: ReasonRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.cancel_health_check(
        db=db, health_check_id=health_check_id, reason=data.reason, current_user=current_user
    )


@router.get("/{health_check_id}/workflow-status", response_model=WorkflowStatusResponse)
def workflow_status(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.get_workflow_status(db=db, health_check_id=health_check_id, current_user=current_user)


@router.get("/{health_check_id}/financial-summary", response_model=FinancialSummaryResponse)
def financial_summary(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return transitions.get_financial_summary(db=db, health_check_id=health_check_id, current_user=current_user)


@router.get("/{health_check_id}/close-readiness", response_model=CloseReadinessResponse)
def close_readiness(
    health_check_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Advisory warnings shown before closing."""
    readiness = transitions.evaluate_close_readiness(
        db=db, health_check_id=health_check_id, current_user=current_user
    )
    return CloseReadinessResponse(
        undecided_items=readiness.undecided_items,
        incomplete_work_items=readiness.incomplete_work_items,
        has_warnings=readiness.has_warnings,
    )


@router.post(
    "/{health_check_id}/repair-items",
    response_model=RepairItemResponse,
    dependencies=[Depends(PermissionChecker("canPrice"))],
)
def create_repair_item(
    health_check_id: UUID,
    data: RepairItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return create_manual_repair_item(
        db=db,
        health_check_id=health_check_id,
        name=data.name,
        description=data.description,
        rag_status=data.rag_status,
        is_visible=data.is_visible,
        is_mot_failure=data.is_mot_failure,
        current_user=current_user,
    )


@router.post(
    "/{health_check_id}/repair-items/from-check-result",
    response_model=RepairItemResponse,
    dependencies=[Depends(PermissionChecker("canPrice"))],
)
def create_repair_item_from_result(
    health_check_id: UUID,
    data: RepairItemFromCheckResultRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return create_repair_item_from_check_result(
        db=db,
        health_check_id=health_check_id,
        check_result_id=data.check_result_id,
        current_user=current_user,
    )


@router.post(
    "/{health_check_id}/repair-groups",
    response_model=RepairItemResponse,
    dependencies=[Depends(PermissionChecker("canPrice"))],
)
def create_group(
    health_check_id: UUID,
    data: RepairGroupCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return create_repair_group(
        db=db,
        health_check_id=health_check_id,
        name=data.name,
        description=data.description,
        child_ids=data.child_ids,
        current_user=current_user,
    )


@router.post(
    "/{health_check_id}/decisions/bulk",
    response_model=list[AuthorizationResponse],
    dependencies=[Depends(PermissionChecker("canRecordDecisions"))],
)
def bulk_decisions(
    health_check_id: UUID,
    data: BulkDecisionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return bulk_record_decisions(
        db=db,
        health_check_id=health_check_id,
        repair_item_ids=data.repair_item_ids,
        decision=data.decision,
        notes=data.notes,
        current_user=current_user,
    )
