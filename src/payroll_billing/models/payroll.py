"""Versioned payroll configuration, schedule reference data, and payroll dates."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_billing.models.base import Base, TimestampMixin, UpdatedAtMixin

if TYPE_CHECKING:
    from payroll_billing.models.client import Client


DEFAULT_PROCESSING_DAYS_BEFORE_EFT = 4
DEFAULT_EMPLOYEE_COUNT = 0
DEFAULT_PAYROLL_STATUS = "Implementation"

# Columns a new version may override; everything else is version bookkeeping
VERSIONED_FIELDS = (
    "name",
    "client_id",
    "cycle_id",
    "date_type_id",
    "date_value",
    "primary_consultant_user_id",
    "backup_consultant_user_id",
    "manager_user_id",
    "processing_days_before_eft",
    "employee_count",
    "status",
)


# ===== Schedule reference data =====


class PayrollCycle(Base):
    """Payroll frequency (weekly, fortnightly, bi_monthly, monthly, quarterly)."""

    __tablename__ = "payroll_cycle"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    __table_args__ = (
        CheckConstraint(
            "name IN ('weekly', 'fortnightly', 'bi_monthly', 'monthly', 'quarterly')",
            name="payroll_cycle_name_check",
        ),
    )


class PayrollDateType(Base):
    """How a cycle anchors its EFT dates (eom, som, fixed_date, dow)."""

    __tablename__ = "payroll_date_type"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    __table_args__ = (
        CheckConstraint(
            "name IN ('eom', 'som', 'fixed_date', 'dow')",
            name="payroll_date_type_name_check",
        ),
    )


class Holiday(Base):
    """Non-business day used when shifting EFT and processing dates."""

    __tablename__ = "holiday"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    local_name: Mapped[str] = mapped_column(String, nullable=False)
    region: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("holiday_date", "local_name", name="holiday_date_name_unique"),
    )


# ===== Payroll versions =====


class Payroll(Base, TimestampMixin, UpdatedAtMixin):
    """One immutable version of a payroll configuration.

    Versions sharing a parent_payroll_id form a chain; the first version is
    its own parent. Exactly one version per chain has no superseded_date.
    """

    __tablename__ = "payroll"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    parent_payroll_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    go_live_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    superseded_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    name: Mapped[str] = mapped_column(String, nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("client.id", ondelete="RESTRICT"), nullable=True
    )
    cycle_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_cycle.id"), nullable=True
    )
    date_type_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_date_type.id"), nullable=True
    )
    date_value: Mapped[int | None] = mapped_column(Integer, nullable=True)

    primary_consultant_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    backup_consultant_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    manager_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    processing_days_before_eft: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_PROCESSING_DAYS_BEFORE_EFT
    )
    employee_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_EMPLOYEE_COUNT
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=DEFAULT_PAYROLL_STATUS
    )
    version_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "parent_payroll_id", "version_number", name="payroll_chain_version_unique"
        ),
        Index(
            "payroll_one_current_version",
            "parent_payroll_id",
            unique=True,
            postgresql_where=text("superseded_date IS NULL"),
            sqlite_where=text("superseded_date IS NULL"),
        ),
        CheckConstraint("version_number >= 1", name="payroll_version_number_check"),
        CheckConstraint(
            "processing_days_before_eft >= 0", name="payroll_processing_days_check"
        ),
        CheckConstraint("employee_count >= 0", name="payroll_employee_count_check"),
    )

    # Relationships
    client: Mapped[Client | None] = relationship()
    cycle: Mapped[PayrollCycle | None] = relationship()
    date_type: Mapped[PayrollDateType | None] = relationship()
    dates: Mapped[list[PayrollDate]] = relationship(back_populates="payroll")

    @classmethod
    def new_chain(cls, **fields) -> Payroll:
        """Build the first version of a new payroll chain."""
        payroll_id = fields.pop("id", None) or uuid4()
        fields.setdefault("version_number", 1)
        return cls(id=payroll_id, parent_payroll_id=payroll_id, **fields)

    @property
    def chain_id(self) -> UUID:
        """Stable identity across versions."""
        return self.parent_payroll_id or self.id

    @property
    def is_current(self) -> bool:
        return self.superseded_date is None

    def governs(self, on_date: date) -> bool:
        """Whether this version owns dates falling on on_date."""
        if self.go_live_date is not None and on_date < self.go_live_date:
            return False
        return self.superseded_date is None or on_date < self.superseded_date


class PayrollDate(Base, TimestampMixin):
    """A single payroll occurrence owned by one payroll version."""

    __tablename__ = "payroll_date"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_eft_date: Mapped[date] = mapped_column(Date, nullable=False)
    adjusted_eft_date: Mapped[date] = mapped_column(Date, nullable=False)
    processing_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="scheduled")
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "payroll_id", "original_eft_date", name="payroll_date_payroll_eft_unique"
        ),
        CheckConstraint(
            "status IN ('scheduled', 'completed')", name="payroll_date_status_check"
        ),
        CheckConstraint(
            "processing_date <= adjusted_eft_date", name="payroll_date_processing_check"
        ),
    )

    # Relationships
    payroll: Mapped[Payroll] = relationship(back_populates="dates")


class PayrollNote(Base, TimestampMixin):
    """Free-text processing note attached to a payroll version."""

    __tablename__ = "payroll_note"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
