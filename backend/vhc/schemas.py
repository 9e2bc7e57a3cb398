"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: UUID
    name: str
    initials: str
    model_config = ConfigDict(from_attributes=True)


# Health checks
class HealthCheckResponse(BaseModel):
    id: UUID
    status: str
    vehicle_registration: Optional[str] = None
    customer_id: Optional[UUID] = None
    technician_id: Optional[UUID] = None
    advisor_id: Optional[UUID] = None
    arrived_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    mri_bypassed: bool = False
    tech_started_at: Optional[datetime] = None
    tech_completed_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    first_opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by_id: Optional[UUID] = None
    unable_to_send_reason: Optional[str] = None
    red_count: int = 0
    amber_count: int = 0
    green_count: int = 0
    total_labour: Decimal = Decimal("0")
    total_parts: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    total_vat: Decimal = Decimal("0")
    total_inc_vat: Decimal = Decimal("0")
    token_expires_at: Optional[datetime] = None
    token_expiry_days: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class CheckinRequest(BaseModel):
    checkin_data: dict[str, Any]
    generate_mri_items: bool = True


class CheckinResponse(BaseModel):
    health_check: HealthCheckResponse
    generated_item_ids: list[UUID] = []


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AssignTechnicianRequest(BaseModel):
    technician_id: UUID


class PublishRequest(BaseModel):
    send_email: bool = False
    send_sms: bool = False
    expiry_days: Optional[int] = None
    custom_message: Optional[str] = Field(None, max_length=1000)


class DeliveryResponse(BaseModel):
    channel: str
    recipient: str
    ok: bool
    error: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class PublishResponse(BaseModel):
    health_check: HealthCheckResponse
    public_url: str
    expires_at: datetime
    deliveries: list[DeliveryResponse] = []
    degraded: bool = False
    deduplicated: bool = False


class BadgeAttributionResponse(BaseModel):
    at: Optional[datetime] = None
    by: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)


class WorkflowStatusResponse(BaseModel):
    technician: str
    labour: str
    parts: str
    authorisation: str
    quote: str
    sent: str
    repair_item_count: int
    attribution: dict[str, BadgeAttributionResponse] = {}
    model_config = ConfigDict(from_attributes=True)


class FinancialSummaryResponse(BaseModel):
    total_identified: Decimal
    total_authorised: Decimal
    total_declined: Decimal
    total_pending: Decimal
    completed_value: Decimal
    outstanding_value: Decimal
    model_config = ConfigDict(from_attributes=True)


class CloseReadinessResponse(BaseModel):
    undecided_items: list[UUID] = []
    incomplete_work_items: list[UUID] = []
    has_warnings: bool = False
    model_config = ConfigDict(from_attributes=True)


# Repair items
class RepairLabourResponse(BaseModel):
    id: UUID
    labour_code: str
    description: Optional[str] = None
    hours: Decimal
    rate: Decimal
    discount_percent: Decimal
    total: Decimal
    is_vat_exempt: bool = False
    model_config = ConfigDict(from_attributes=True)


class RepairPartResponse(BaseModel):
    id: UUID
    part_number: Optional[str] = None
    description: str
    quantity: Decimal
    cost_price: Decimal
    sell_price: Decimal
    discount_percent: Decimal
    line_total: Decimal
    margin_percent: Optional[Decimal] = None
    markup_percent: Optional[Decimal] = None
    model_config = ConfigDict(from_attributes=True)


class RepairOptionResponse(BaseModel):
    id: UUID
    repair_item_id: UUID
    name: str
    description: Optional[str] = None
    is_recommended: bool = False
    sort_order: int
    labour_total: Decimal
    parts_total: Decimal
    subtotal: Decimal
    vat_amount: Decimal
    total_inc_vat: Decimal
    labour_entries: list[RepairLabourResponse] = []
    part_entries: list[RepairPartResponse] = []
    model_config = ConfigDict(from_attributes=True)


class RepairItemResponse(BaseModel):
    id: UUID
    health_check_id: UUID
    parent_repair_item_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    rag_status: Optional[str] = None
    is_group: bool
    is_visible: bool
    is_mot_failure: bool
    sort_order: int
    source: str
    labour_total: Decimal
    parts_total: Decimal
    vat_amount: Decimal = Decimal("0")
    total_price: Decimal
    labour_completed_at: Optional[datetime] = None
    parts_completed_at: Optional[datetime] = None
    no_labour_required: bool = False
    no_parts_required: bool = False
    deleted_at: Optional[datetime] = None
    labour_entries: list[RepairLabourResponse] = []
    selected_option_id: Optional[UUID] = None
    options: list[RepairOptionResponse] = []
    part_entries: list[RepairPartResponse] = []
    model_config = ConfigDict(from_attributes=True)


class RepairItemFromCheckResultRequest(BaseModel):
    check_result_id: UUID


class RepairItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    rag_status: Optional[str] = None
    is_visible: bool = True
    is_mot_failure: bool = False


class RepairItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    rag_status: Optional[str] = None
    is_visible: Optional[bool] = None
    is_mot_failure: Optional[bool] = None
    sort_order: Optional[int] = None


class RepairItemDelete(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RepairGroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    child_ids: list[UUID] = Field(..., min_length=2)


class RepairGroupChildRequest(BaseModel):
    child_id: UUID


class RepairOptionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_recommended: bool = False


class RepairOptionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_recommended: Optional[bool] = None
    sort_order: Optional[int] = None


class SelectOptionRequest(BaseModel):
    # None goes back to the item's own lines
    option_id: Optional[UUID] = None


class LabourEntryCreate(BaseModel):
    labour_code: str = Field(..., min_length=1, max_length=50)
    hours: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    description: Optional[str] = None
    is_vat_exempt: bool = False
    notes: Optional[str] = None
    repair_option_id: Optional[UUID] = None


class LabourEntryUpdate(BaseModel):
    labour_code: Optional[str] = Field(None, min_length=1, max_length=50)
    hours: Optional[Decimal] = Field(None, ge=0)
    rate: Optional[Decimal] = Field(None, ge=0)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = None
    is_vat_exempt: Optional[bool] = None
    notes: Optional[str] = None


class PartEntryCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    sell_price: Decimal = Field(..., ge=0)
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    part_number: Optional[str] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None
    repair_option_id: Optional[UUID] = None


class PartEntryUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=255)
    quantity: Optional[Decimal] = Field(None, gt=0)
    sell_price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    part_number: Optional[str] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None


# Decisions
class DecisionRequest(BaseModel):
    decision: str = Field(..., pattern="^(approved|declined)$")
    notes: Optional[str] = None
    signature: Optional[str] = None
    declined_reason: Optional[str] = Field(None, max_length=255)
    selected_option_id: Optional[UUID] = None


class BulkDecisionRequest(BaseModel):
    repair_item_ids: list[UUID] = Field(..., min_length=1)
    decision: str = Field(..., pattern="^(approved|declined)$")
    notes: Optional[str] = None


class AuthorizationResponse(BaseModel):
    repair_item_id: UUID
    decision: str
    decided_at: datetime
    source: str
    customer_notes: Optional[str] = None
    declined_reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# Public (customer) view
class PublicRepairOption(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    is_recommended: bool = False
    total_price: Decimal
    total_inc_vat: Decimal


class PublicRepairItem(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    rag_status: Optional[str] = None
    total_price: Decimal
    total_inc_vat: Decimal = Decimal("0")
    selected_option_id: Optional[UUID] = None
    options: list[PublicRepairOption] = []
    decision: Optional[str] = None


class PublicHealthCheckResponse(BaseModel):
    id: UUID
    status: str
    vehicle_registration: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    repair_items: list[PublicRepairItem] = []
    totals: FinancialSummaryResponse
