"""Service catalog, billing items, and billing audit logs."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_billing.models.base import Base, TimestampMixin, UpdatedAtMixin, utcnow

GENERATED_FROM_RECURRING = "recurring_schedule"
GENERATED_FROM_COMPLETION = "completion_metrics"


class RecurringService(Base, TimestampMixin):
    """Catalog entry for a monthly recurring service fee."""

    __tablename__ = "recurring_service"

    service_code: Mapped[str] = mapped_column(String, primary_key=True)
    service_name: Mapped[str] = mapped_column(String, nullable=False)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    new_client_proration: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    termination_proration: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    minimum_charge: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    auto_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("base_rate >= 0", name="recurring_service_base_rate_check"),
        CheckConstraint(
            "minimum_charge IS NULL OR minimum_charge >= 0",
            name="recurring_service_minimum_charge_check",
        ),
    )


class BillingItem(Base, TimestampMixin):
    """An invoice-able line item.

    Auto-generated items are insert-if-absent: at most one per
    (client, service, period start, source) for the recurring schedule, and
    one per (payroll date, service, source) for completion metrics.
    """

    __tablename__ = "billing_item"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    payroll_date_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_date.id", ondelete="SET NULL"), nullable=True, index=True
    )
    service_code: Mapped[str] = mapped_column(String, nullable=False)
    service_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("1")
    )
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)

    auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    generated_from: Mapped[str | None] = mapped_column(String, nullable=True)
    billing_tier: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    requires_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    approval_level: Mapped[str] = mapped_column(String, nullable=False, default="review")
    rate_justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index(
            "billing_item_recurring_unique",
            "client_id",
            "service_code",
            "billing_period_start",
            "generated_from",
            unique=True,
            postgresql_where=text(f"generated_from = '{GENERATED_FROM_RECURRING}'"),
            sqlite_where=text(f"generated_from = '{GENERATED_FROM_RECURRING}'"),
        ),
        Index(
            "billing_item_completion_unique",
            "payroll_date_id",
            "service_code",
            "generated_from",
            unique=True,
            postgresql_where=text(f"generated_from = '{GENERATED_FROM_COMPLETION}'"),
            sqlite_where=text(f"generated_from = '{GENERATED_FROM_COMPLETION}'"),
        ),
        CheckConstraint(
            "status IN ('draft', 'approved')", name="billing_item_status_check"
        ),
        CheckConstraint(
            "generated_from IS NULL OR generated_from IN "
            f"('{GENERATED_FROM_RECURRING}', '{GENERATED_FROM_COMPLETION}')",
            name="billing_item_generated_from_check",
        ),
        CheckConstraint("total_amount >= 0", name="billing_item_amount_check"),
        CheckConstraint(
            "billing_period_end >= billing_period_start",
            name="billing_item_period_check",
        ),
    )


class RecurringBillingLog(Base):
    """Append-only record of one recurring generation per client/service/month."""

    __tablename__ = "recurring_billing_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    service_code: Mapped[str] = mapped_column(String, nullable=False)
    billing_month: Mapped[date] = mapped_column(Date, nullable=False)
    billing_item_id: Mapped[UUID | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    proration_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    generated_by_system: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )


class BillingEventLog(Base, TimestampMixin):
    """One summary row per generation run or completion event."""

    __tablename__ = "billing_event_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    created_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)


class PayrollCompletionMetrics(Base, TimestampMixin, UpdatedAtMixin):
    """Volume metrics recorded when a payroll run is completed."""

    __tablename__ = "payroll_completion_metrics"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_date_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_date.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    completed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    payslips_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    employees_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_starters: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    terminations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leave_calculations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bonus_payments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_adjustments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    super_contributions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    workers_comp_claims: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    garnishment_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payg_summaries: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fbt_calculations: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exceptions_handled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    corrections_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_communications: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    generation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    billing_generated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    billing_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "payslips_processed >= 0 AND employees_processed >= 0",
            name="completion_metrics_core_non_negative",
        ),
    )
