"""SQLAlchemy models for health checks, repair items and the customer decision ledger."""
from decimal import Decimal

from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text, Numeric,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base


HEALTH_CHECK_STATUSES: tuple[str, ...] = (
    "awaiting_arrival", "awaiting_checkin", "no_show",
    "created", "assigned", "in_progress", "paused", "tech_completed",
    "awaiting_review", "awaiting_pricing", "awaiting_parts", "ready_to_send",
    "sent", "opened", "partial_response", "authorized", "declined",
    "completed", "closed", "expired", "cancelled",
)

USER_ROLES: tuple[str, ...] = (
    "super_admin", "org_admin", "site_admin", "service_advisor", "technician",
)

TIMELINE_EVENT_TYPES: tuple[str, ...] = (
    "status_changed",
    "checkin_completed", "checkin_skipped",
    "repair_item_created", "repair_item_updated", "repair_item_deleted",
    "repair_group_created", "repair_group_child_added", "repair_group_child_removed", "repair_group_ungrouped",
    "labour_added", "labour_updated", "labour_deleted",
    "parts_added", "parts_updated", "parts_deleted",
    "labour_completed", "labour_completion_undone", "no_labour_required", "no_labour_required_cleared",
    "parts_completed", "parts_completion_undone", "no_parts_required", "no_parts_required_cleared",
    "outcome_authorised", "outcome_declined", "outcome_reset",
    "repair_option_created", "repair_option_updated", "repair_option_deleted", "repair_option_selected",
    "sent_to_customer", "unable_to_send", "notification_failed", "customer_opened",
)


class Organization(Base):
    """Organization model (multi-tenant support)."""
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class User(Base):
    """Staff member (technician, advisor or administrator)."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    initials = Column(String(50), nullable=False)
    role = Column(String(50), nullable=False, index=True)
    # Monotonically increasing version used to revoke previously issued tokens.
    token_version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(list(USER_ROLES)), name='chk_user_role'),
    )


class Customer(Base):
    """Customer contact details used for publishing."""
    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    mobile = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class HealthCheck(Base):
    """One inspection visit."""
    __tablename__ = "health_checks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    vehicle_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    vehicle_registration = Column(String(20), nullable=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    technician_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    advisor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    status = Column(String(30), nullable=False, default='created', index=True)

    # Lifecycle milestones
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    checkin_data = Column(JSONB, nullable=True)
    checkin_skipped_reason = Column(Text, nullable=True)
    mri_bypassed = Column(Boolean, nullable=False, default=False)
    tech_started_at = Column(DateTime(timezone=True), nullable=True)
    tech_completed_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    first_opened_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    unable_to_send_reason = Column(Text, nullable=True)
    unable_to_send_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_reason = Column(Text, nullable=True)

    # RAG counts and money (denormalized for lists; recomputed by use-cases)
    red_count = Column(Integer, nullable=False, default=0)
    amber_count = Column(Integer, nullable=False, default=0)
    green_count = Column(Integer, nullable=False, default=0)
    total_parts = Column(Numeric(12, 2), nullable=False, default=0)
    total_labour = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_vat = Column(Numeric(12, 2), nullable=False, default=0)
    total_inc_vat = Column(Numeric(12, 2), nullable=False, default=0)

    # Customer-facing link
    public_token = Column(String(64), nullable=True, unique=True, index=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    token_expiry_days = Column(Integer, nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deletion_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(list(HEALTH_CHECK_STATUSES)), name='chk_health_check_status'),
        CheckConstraint(
            "token_expiry_days IS NULL OR token_expiry_days > 0",
            name='chk_health_check_token_expiry_days'
        ),
    )

    # Relationships
    customer = relationship("Customer")
    check_results = relationship("CheckResult", back_populates="health_check")
    repair_items = relationship("RepairItem", back_populates="health_check")


class CheckResult(Base):
    """One answered inspection item."""
    __tablename__ = "check_results"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    template_item_id = Column(UUID(as_uuid=True), nullable=True)
    item_name = Column(String(255), nullable=False)
    item_description = Column(Text, nullable=True)
    rag_status = Column(String(10), nullable=True)
    value = Column(JSONB, nullable=True)
    notes = Column(Text, nullable=True)
    is_mot_failure = Column(Boolean, nullable=False, default=False)
    vehicle_location_name = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            rag_status.in_(['green', 'amber', 'red']) | (rag_status == None),
            name='chk_check_result_rag'
        ),
    )

    health_check = relationship("HealthCheck", back_populates="check_results")


class MriScanResult(Base):
    """Manufacturer Recommended Item answered at check-in."""
    __tablename__ = "mri_scan_results"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    sales_description = Column(Text, nullable=True)
    rag_status = Column(String(10), nullable=True)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            rag_status.in_(['green', 'amber', 'red']) | (rag_status == None),
            name='chk_mri_result_rag'
        ),
    )


class RepairItem(Base):
    """Priced, authorizable unit of work; optionally a group of child items."""
    __tablename__ = "repair_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    parent_repair_item_id = Column(UUID(as_uuid=True), ForeignKey("repair_items.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    rag_status = Column(String(10), nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)
    is_visible = Column(Boolean, nullable=False, default=True)
    is_mot_failure = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    source = Column(String(20), nullable=False, default='manual')
    mri_result_id = Column(UUID(as_uuid=True), ForeignKey("mri_scan_results.id"), nullable=True)
    selected_option_id = Column(
        UUID(as_uuid=True),
        ForeignKey("repair_options.id", use_alter=True, name="fk_repair_items_selected_option", ondelete="SET NULL"),
        nullable=True,
    )

    # Own direct costs; unrounded sums of entry totals
    labour_total = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    parts_total = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    # VAT on the own lines, rounded to pence; exempt labour excluded
    vat_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    labour_completed_at = Column(DateTime(timezone=True), nullable=True)
    labour_completed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    parts_completed_at = Column(DateTime(timezone=True), nullable=True)
    parts_completed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    no_labour_required = Column(Boolean, nullable=False, default=False)
    no_labour_required_at = Column(DateTime(timezone=True), nullable=True)
    no_labour_required_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    no_parts_required = Column(Boolean, nullable=False, default=False)
    no_parts_required_at = Column(DateTime(timezone=True), nullable=True)
    no_parts_required_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    deleted_reason = Column(Text, nullable=True)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            rag_status.in_(['amber', 'red']) | (rag_status == None),
            name='chk_repair_item_rag'
        ),
        CheckConstraint(
            source.in_(['check_result', 'manual', 'mri_scan']),
            name='chk_repair_item_source'
        ),
        CheckConstraint(
            "NOT (is_group AND parent_repair_item_id IS NOT NULL)",
            name='chk_repair_item_group_not_nested'
        ),
        CheckConstraint(labour_total >= 0, name='chk_repair_item_labour_total'),
        CheckConstraint(parts_total >= 0, name='chk_repair_item_parts_total'),
        Index('idx_repair_items_live', 'health_check_id', postgresql_where=(deleted_at == None)),
    )

    # Relationships
    health_check = relationship("HealthCheck", back_populates="repair_items")
    parent = relationship("RepairItem", remote_side=[id], back_populates="children")
    children = relationship("RepairItem", back_populates="parent", order_by="RepairItem.sort_order")
    labour_entries = relationship("RepairLabour", back_populates="repair_item", cascade="all, delete-orphan")
    part_entries = relationship("RepairPart", back_populates="repair_item", cascade="all, delete-orphan")
    authorization = relationship(
        "RepairItemAuthorization",
        back_populates="repair_item",
        uselist=False,
        cascade="all, delete-orphan",
    )
    check_result_links = relationship("RepairItemCheckResult", cascade="all, delete-orphan")
    options = relationship(
        "RepairOption",
        back_populates="repair_item",
        foreign_keys="RepairOption.repair_item_id",
        cascade="all, delete-orphan",
        order_by="RepairOption.sort_order",
    )
    selected_option = relationship("RepairOption", foreign_keys=[selected_option_id], post_update=True)

    @property
    def total_price(self) -> Decimal:
        """Own direct cost; groups add their children on top (see effective_total)."""
        return Decimal(self.parts_total or 0) + Decimal(self.labour_total or 0)


class RepairItemCheckResult(Base):
    """Junction between repair items and the check results they address."""
    __tablename__ = "repair_item_check_results"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repair_item_id = Column(UUID(as_uuid=True), ForeignKey("repair_items.id"), nullable=False, index=True)
    check_result_id = Column(UUID(as_uuid=True), ForeignKey("check_results.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('repair_item_id', 'check_result_id', name='uq_repair_item_check_result'),
    )


class RepairOption(Base):
    """Alternative pricing for a repair item (e.g. OEM vs pattern parts)."""
    __tablename__ = "repair_options"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repair_item_id = Column(
        UUID(as_uuid=True),
        ForeignKey("repair_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_recommended = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    labour_total = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    parts_total = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    vat_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    repair_item = relationship("RepairItem", back_populates="options", foreign_keys=[repair_item_id])
    labour_entries = relationship("RepairLabour", back_populates="repair_option", cascade="all, delete-orphan")
    part_entries = relationship("RepairPart", back_populates="repair_option", cascade="all, delete-orphan")

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.labour_total or 0) + Decimal(self.parts_total or 0)

    @property
    def total_inc_vat(self) -> Decimal:
        return self.subtotal + Decimal(self.vat_amount or 0)


class RepairLabour(Base):
    """Labour line on a repair item or on one of its options."""
    __tablename__ = "repair_labour"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repair_item_id = Column(UUID(as_uuid=True), ForeignKey("repair_items.id"), nullable=True, index=True)
    repair_option_id = Column(
        UUID(as_uuid=True),
        ForeignKey("repair_options.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    labour_code = Column(String(50), nullable=False)
    description = Column(String(255), nullable=True)
    hours = Column(Numeric(8, 2), nullable=False)
    rate = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    total = Column(Numeric(12, 4), nullable=False)
    is_vat_exempt = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(hours >= 0, name='chk_repair_labour_hours'),
        CheckConstraint(rate >= 0, name='chk_repair_labour_rate'),
        CheckConstraint(
            (discount_percent >= 0) & (discount_percent <= 100),
            name='chk_repair_labour_discount'
        ),
        CheckConstraint(
            "(repair_item_id IS NULL) <> (repair_option_id IS NULL)",
            name='chk_repair_labour_owner'
        ),
    )
    # A line hangs off its item or its option, never both; orphaned only when it has neither.
    __mapper_args__ = {"legacy_is_orphan": True}

    repair_item = relationship("RepairItem", back_populates="labour_entries")
    repair_option = relationship("RepairOption", back_populates="labour_entries")


class RepairPart(Base):
    """Parts line on a repair item or on one of its options."""
    __tablename__ = "repair_parts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repair_item_id = Column(UUID(as_uuid=True), ForeignKey("repair_items.id"), nullable=True, index=True)
    repair_option_id = Column(
        UUID(as_uuid=True),
        ForeignKey("repair_options.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    part_number = Column(String(100), nullable=True)
    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False, default=Decimal("1"))
    supplier_name = Column(String(255), nullable=True)
    cost_price = Column(Numeric(10, 2), nullable=False)
    sell_price = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    line_total = Column(Numeric(12, 4), nullable=False)
    margin_percent = Column(Numeric(7, 2), nullable=True)
    markup_percent = Column(Numeric(7, 2), nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(quantity > 0, name='chk_repair_part_quantity'),
        CheckConstraint(sell_price >= 0, name='chk_repair_part_sell_price'),
        CheckConstraint(
            (discount_percent >= 0) & (discount_percent <= 100),
            name='chk_repair_part_discount'
        ),
        CheckConstraint(
            "(repair_item_id IS NULL) <> (repair_option_id IS NULL)",
            name='chk_repair_part_owner'
        ),
    )
    __mapper_args__ = {"legacy_is_orphan": True}

    repair_item = relationship("RepairItem", back_populates="part_entries")
    repair_option = relationship("RepairOption", back_populates="part_entries")


class RepairItemAuthorization(Base):
    """Current customer decision on one repair item (one row per item)."""
    __tablename__ = "repair_item_authorizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repair_item_id = Column(UUID(as_uuid=True), ForeignKey("repair_items.id"), nullable=False, unique=True)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    decision = Column(String(20), nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(20), nullable=False, default='customer')
    decided_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    customer_notes = Column(Text, nullable=True)
    signature_data = Column(Text, nullable=True)
    declined_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(decision.in_(['approved', 'declined']), name='chk_authorization_decision'),
        CheckConstraint(source.in_(['customer', 'advisor']), name='chk_authorization_source'),
    )

    repair_item = relationship("RepairItem", back_populates="authorization")


class HealthCheckStatusHistory(Base):
    """One row per lifecycle transition."""
    __tablename__ = "health_check_status_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    changed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    change_source = Column(String(20), nullable=False, default='user')
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(change_source.in_(['user', 'customer', 'system']), name='chk_status_history_source'),
    )


class AuditEvent(Base):
    """Timeline entry shown in the health check history."""
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    user_name = Column(String(100), nullable=True)
    details = Column(JSONB, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(event_type.in_(list(TIMELINE_EVENT_TYPES)), name='chk_audit_event_type'),
        CheckConstraint(
            entity_type.in_(['health_check', 'repair_item', 'repair_option', 'labour', 'parts', 'authorization']),
            name='chk_audit_entity_type'
        ),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )


class NotificationOutbox(Base):
    """
    Outbound customer message - ONE ROW PER CHANNEL/RECIPIENT.
    Processed concurrently with SELECT FOR UPDATE SKIP LOCKED.
    """
    __tablename__ = "notification_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    health_check_id = Column(UUID(as_uuid=True), ForeignKey("health_checks.id"), nullable=True, index=True)
    channel = Column(String(10), nullable=False)
    recipient = Column(String(255), nullable=False)
    payload = Column(JSONB, default={})

    status = Column(String(20), default='pending', index=True)  # pending/sent/failed
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(channel.in_(['email', 'sms']), name='chk_notification_channel'),
        CheckConstraint(status.in_(['pending', 'sent', 'failed']), name='chk_notification_status'),
        Index('idx_outbox_pending_retry', 'status', 'next_retry_at',
              postgresql_where=(status == 'pending')),
    )
