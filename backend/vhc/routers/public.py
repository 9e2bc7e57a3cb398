"""Customer-facing endpoints reached through the public link token."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import (
    AuthorizationResponse,
    DecisionRequest,
    FinancialSummaryResponse,
    PublicHealthCheckResponse,
    PublicRepairItem,
    PublicRepairOption,
)
from ..services.financials import (
    compute_totals,
    decision_map,
    effective_total,
    effective_vat_amount,
    item_decision,
    top_level_items,
)
from ..services.money import round_currency
from ..services.store import load_authorizations, load_repair_items
from ..use_cases.authorizations import record_customer_decision
from ..use_cases.health_check_transitions import record_opened

router = APIRouter(prefix="/public", tags=["public"])


def _public_options(item) -> list[PublicRepairOption]:
    return [
        PublicRepairOption(
            id=option.id,
            name=option.name,
            description=option.description,
            is_recommended=option.is_recommended,
            total_price=round_currency(option.subtotal),
            total_inc_vat=round_currency(option.total_inc_vat),
        )
        for option in item.options
    ]


@router.get("/{token}", response_model=PublicHealthCheckResponse)
def view_health_check(token: str, db: Session = Depends(get_db)):
    """Customer opens the link."""
    health_check = record_opened(db=db, token=token)
    items = load_repair_items(db=db, health_check_id=health_check.id)
    auths = load_authorizations(db=db, health_check_id=health_check.id)
    decisions = decision_map(auths)

    visible = [item for item in top_level_items(items) if item.is_visible]
    return PublicHealthCheckResponse(
        id=health_check.id,
        status=health_check.status,
        vehicle_registration=health_check.vehicle_registration,
        token_expires_at=health_check.token_expires_at,
        repair_items=[
            PublicRepairItem(
                id=item.id,
                name=item.name,
                description=item.description,
                rag_status=item.rag_status,
                total_price=round_currency(effective_total(item)),
                total_inc_vat=round_currency(effective_total(item) + effective_vat_amount(item)),
                selected_option_id=item.selected_option_id,
                options=_public_options(item),
                decision=item_decision(item, decisions),
            )
            for item in visible
        ],
        totals=FinancialSummaryResponse.model_validate(compute_totals(items, auths)),
    )


@router.put("/{token}/repair-items/{repair_item_id}/decision", response_model=AuthorizationResponse)
def customer_decision(
    token: str,
    repair_item_id: UUID,
    data: DecisionRequest,
    db: Session = Depends(get_db),
):
    return record_customer_decision(
        db=db,
        token=token,
        repair_item_id=repair_item_id,
        decision=data.decision,
        notes=data.notes,
        signature=data.signature,
        declined_reason=data.declined_reason,
        selected_option_id=data.selected_option_id,
    )
