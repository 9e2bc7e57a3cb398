"""Repair item, pricing, completion and decision endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    AuthorizationResponse,
    DecisionRequest,
    LabourEntryCreate,
    LabourEntryUpdate,
    PartEntryCreate,
    PartEntryUpdate,
    RepairGroupChildRequest,
    RepairItemDelete,
    RepairItemResponse,
    RepairItemUpdate,
    RepairLabourResponse,
    RepairOptionCreate,
    RepairOptionResponse,
    RepairOptionUpdate,
    RepairPartResponse,
    SelectOptionRequest,
)
from ..use_cases import completion
from ..use_cases import repair_items as items
from ..use_cases import repair_options as options
from ..use_cases.authorizations import record_decision, reset_decision

router = APIRouter(prefix="/repair-items", tags=["repair-items"])

_can_price = [Depends(PermissionChecker("canPrice"))]


@router.patch("/{repair_item_id}", response_model=RepairItemResponse, dependencies=_can_price)
def update_repair_item(
    repair_item_id: UUID,
    data: RepairItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.update_repair_item(
        db=db,
        repair_item_id=repair_item_id,
        changes=data.model_dump(exclude_unset=True),
        current_user=current_user,
    )


@router.delete("/{repair_item_id}", response_model=RepairItemResponse, dependencies=_can_price)
def delete_repair_item(
    repair_item_id: UUID,
    data: RepairItemDelete | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.soft_delete_repair_item(
        db=db,
        repair_item_id=repair_item_id,
        reason=data.reason if data else None,
        current_user=current_user,
    )


# Hierarchy
@router.post("/{group_id}/children", response_model=RepairItemResponse, dependencies=_can_price)
def add_child(
    group_id: UUID,
    data: RepairGroupChildRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.add_child_to_group(db=db, group_id=group_id, child_id=data.child_id, current_user=current_user)


@router.delete("/{group_id}/children/{child_id}", response_model=RepairItemResponse, dependencies=_can_price)
def remove_child(
    group_id: UUID,
    child_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Promote a child to a standalone item."""
    return items.remove_child_from_group(db=db, group_id=group_id, child_id=child_id, current_user=current_user)


@router.post("/{group_id}/ungroup", response_model=list[RepairItemResponse], dependencies=_can_price)
def ungroup(
    group_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.ungroup_repair_group(db=db, group_id=group_id, current_user=current_user)


# Options
@router.post("/{repair_item_id}/options", response_model=RepairOptionResponse, dependencies=_can_price)
def create_option(
    repair_item_id: UUID,
    data: RepairOptionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return options.create_repair_option(
        db=db, repair_item_id=repair_item_id, current_user=current_user, **data.model_dump()
    )


@router.patch("/options/{option_id}", response_model=RepairOptionResponse, dependencies=_can_price)
def update_option(
    option_id: UUID,
    data: RepairOptionUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return options.update_repair_option(
        db=db, repair_option_id=option_id, changes=data.model_dump(exclude_unset=True), current_user=current_user
    )


@router.delete("/options/{option_id}", response_model=RepairItemResponse, dependencies=_can_price)
def delete_option(
    option_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return options.delete_repair_option(db=db, repair_option_id=option_id, current_user=current_user)


@router.put("/{repair_item_id}/selected-option", response_model=RepairItemResponse, dependencies=_can_price)
def select_option(
    repair_item_id: UUID,
    data: SelectOptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Price the item from one of its options, or from its own lines when option_id is null."""
    return options.select_repair_option(
        db=db, repair_item_id=repair_item_id, option_id=data.option_id, current_user=current_user
    )


# Pricing
@router.post("/{repair_item_id}/labour", response_model=RepairLabourResponse, dependencies=_can_price)
def add_labour(
    repair_item_id: UUID,
    data: LabourEntryCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.add_labour_entry(db=db, repair_item_id=repair_item_id, current_user=current_user, **data.model_dump())


@router.patch("/labour/{labour_id}", response_model=RepairLabourResponse, dependencies=_can_price)
def update_labour(
    labour_id: UUID,
    data: LabourEntryUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.update_labour_entry(
        db=db, labour_id=labour_id, changes=data.model_dump(exclude_unset=True), current_user=current_user
    )


@router.delete("/labour/{labour_id}", response_model=RepairItemResponse, dependencies=_can_price)
def delete_labour(
    labour_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.delete_labour_entry(db=db, labour_id=labour_id, current_user=current_user)


@router.post("/{repair_item_id}/parts", response_model=RepairPartResponse, dependencies=_can_price)
def add_part(
    repair_item_id: UUID,
    data: PartEntryCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.add_part_entry(db=db, repair_item_id=repair_item_id, current_user=current_user, **data.model_dump())


@router.patch("/parts/{part_id}", response_model=RepairPartResponse, dependencies=_can_price)
def update_part(
    part_id: UUID,
    data: PartEntryUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.update_part_entry(
        db=db, part_id=part_id, changes=data.model_dump(exclude_unset=True), current_user=current_user
    )


@router.delete("/parts/{part_id}", response_model=RepairItemResponse, dependencies=_can_price)
def delete_part(
    part_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return items.delete_part_entry(db=db, part_id=part_id, current_user=current_user)


# Completion
_COMPLETION_ACTIONS = {
    "labour-complete": completion.mark_labour_complete,
    "labour-complete/undo": completion.undo_labour_complete,
    "parts-complete": completion.mark_parts_complete,
    "parts-complete/undo": completion.undo_parts_complete,
    "no-labour-required": completion.mark_no_labour_required,
    "no-labour-required/clear": completion.clear_no_labour_required,
    "no-parts-required": completion.mark_no_parts_required,
    "no-parts-required/clear": completion.clear_no_parts_required,
}


def _completion_endpoint(action):
    def endpoint(
        repair_item_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        return action(db=db, repair_item_id=repair_item_id, current_user=current_user)

    endpoint.__name__ = action.__name__
    return endpoint


for _path, _action in _COMPLETION_ACTIONS.items():
    router.add_api_route(
        f"/{{repair_item_id}}/{_path}",
        _completion_endpoint(_action),
        methods=["POST"],
        response_model=RepairItemResponse,
        dependencies=_can_price,
    )


# Decisions
@router.put(
    "/{repair_item_id}/decision",
    response_model=AuthorizationResponse,
    dependencies=[Depends(PermissionChecker("canRecordDecisions"))],
)
def put_decision(
    repair_item_id: UUID,
    data: DecisionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record a decision on the customer's behalf, replacing any earlier one."""
    return record_decision(
        db=db,
        repair_item_id=repair_item_id,
        decision=data.decision,
        notes=data.notes,
        signature=data.signature,
        declined_reason=data.declined_reason,
        selected_option_id=data.selected_option_id,
        current_user=current_user,
    )


@router.delete(
    "/{repair_item_id}/decision",
    response_model=RepairItemResponse,
    dependencies=[Depends(PermissionChecker("canRecordDecisions"))],
)
def delete_decision(
    repair_item_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return reset_decision(db=db, repair_item_id=repair_item_id, current_user=current_user)
