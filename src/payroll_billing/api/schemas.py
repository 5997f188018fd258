"""Pydantic schemas for API request/response models.

Wire names are camelCase; Python attributes stay snake_case.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Currency amounts serialize as JSON numbers
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base schema accepting both camelCase and snake_case input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(CamelModel):
    """Error body shared by the billing routes."""

    success: bool = False
    error: str


# ============================================================================
# Recurring billing schemas
# ============================================================================


class RecurringBillingRequest(CamelModel):
    """Request to generate recurring billing for one month."""

    # Kept as a string so malformed months map to 400, not 422
    billing_month: str
    client_ids: list[UUID] | None = None
    service_code: str | None = None
    dry_run: bool = False


class RecurringBillingItemResponse(CamelModel):
    """One generated recurring item."""

    client_id: UUID
    client_name: str
    service_code: str
    service_name: str
    amount: Money
    prorated: bool
    proration_reason: str | None = None


class RecurringBillingResponse(CamelModel):
    """Result of a recurring billing run."""

    success: bool
    billing_month: str
    items_created: int = 0
    total_amount: Money = Decimal("0")
    clients_processed: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    items: list[RecurringBillingItemResponse] = Field(default_factory=list)
    cancelled: bool = False
    error: str | None = None


# ============================================================================
# Completion metrics schemas
# ============================================================================


class CompletionMetricsPayload(CamelModel):
    """Counts captured when a payroll run is completed."""

    payslips_processed: int = 0
    employees_processed: int = 0
    new_starters: int | None = None
    terminations: int | None = None
    leave_calculations: int | None = None
    bonus_payments: int | None = None
    tax_adjustments: int | None = None
    super_contributions: int | None = None
    workers_comp_claims: int | None = None
    garnishment_orders: int | None = None
    payg_summaries: int | None = None
    fbt_calculations: int | None = None
    exceptions_handled: int | None = None
    corrections_required: int | None = None
    client_communications: int | None = None
    generation_notes: str | None = None


class CompletionMetricsRequest(CamelModel):
    """Create or update completion metrics for a payroll date."""

    payroll_date_id: UUID | None = None
    completed_by: UUID | None = None
    metrics: CompletionMetricsPayload = Field(default_factory=CompletionMetricsPayload)
    generate_billing: bool | None = None


class CompletionMetricsResponse(CamelModel):
    """Outcome of recording completion metrics."""

    success: bool
    metrics_id: UUID | None = None
    billing_generated: bool = False
    items_created: int = 0
    total_amount: Money = Decimal("0")
    message: str


class CompletionMetricsRecord(CompletionMetricsPayload):
    """Stored completion metrics."""

    id: UUID
    payroll_date_id: UUID
    completed_by: UUID | None = None
    completed_at: datetime
    billing_generated: bool
    billing_generated_at: datetime | None = None


class BillingItemResponse(CamelModel):
    """A persisted billing item."""

    id: UUID
    client_id: UUID
    payroll_date_id: UUID | None = None
    service_code: str
    service_name: str
    description: str | None = None
    quantity: Money
    unit_price: Money
    total_amount: Money
    billing_period_start: date
    billing_period_end: date
    generated_from: str | None = None
    billing_tier: str | None = None
    status: str
    requires_approval: bool


class CompletionMetricsDetailResponse(CamelModel):
    """Stored metrics together with their billing items."""

    success: bool = True
    metrics: CompletionMetricsRecord
    billing_items: list[BillingItemResponse] = Field(default_factory=list)


# ============================================================================
# Payroll version schemas
# ============================================================================


class PayrollEdits(CamelModel):
    """Fields a new payroll version may change."""

    name: str | None = None
    client_id: UUID | None = None
    cycle_id: UUID | None = None
    date_type_id: UUID | None = None
    date_value: int | None = None
    primary_consultant_user_id: UUID | None = None
    backup_consultant_user_id: UUID | None = None
    manager_user_id: UUID | None = None
    processing_days_before_eft: int | None = Field(default=None, ge=0)
    employee_count: int | None = Field(default=None, ge=0)
    status: str | None = None


class CreateVersionRequest(CamelModel):
    """Request to create a new version of a payroll."""

    edits: PayrollEdits = Field(default_factory=PayrollEdits)
    go_live_date: date
    version_reason: str | None = None
    created_by_user_id: UUID | None = None

    def edit_values(self) -> dict[str, Any]:
        """Fields the caller sent; an explicit null clears the field."""
        return self.edits.model_dump(exclude_unset=True)


class DateRegenerationInfoResponse(CamelModel):
    """How payroll dates were reassigned."""

    go_live_date_in_past: bool
    regeneration_start_date: date
    dates_removed: int = 0
    dates_generated: int = 0


class VersionResponse(CamelModel):
    """Outcome of creating a payroll version."""

    success: bool
    new_version_id: UUID
    version_number: int
    old_payroll_id: UUID
    employee_count: int
    date_regeneration_info: DateRegenerationInfoResponse
    message: str


class PayrollVersionResponse(CamelModel):
    """One version in a payroll chain."""

    id: UUID
    parent_payroll_id: UUID
    version_number: int
    go_live_date: date | None = None
    superseded_date: date | None = None
    name: str
    client_id: UUID | None = None
    cycle_id: UUID | None = None
    date_type_id: UUID | None = None
    date_value: int | None = None
    processing_days_before_eft: int
    employee_count: int
    status: str
    version_reason: str | None = None
    created_by_user_id: UUID | None = None
    created_at: datetime


class PayrollVersionListResponse(CamelModel):
    """Version history of a payroll chain."""

    items: list[PayrollVersionResponse]
    total: int
