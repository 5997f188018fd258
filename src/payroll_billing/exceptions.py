"""Exceptions raised by the billing and versioning services."""

from __future__ import annotations

from datetime import date
from uuid import UUID


class BillingError(Exception):
    """Base class for engine errors that map to a client-facing status."""


class InvalidBillingMonthError(BillingError):
    """Raised when a billing month is not the first day of a month."""

    def __init__(self, billing_month: date | str | None):
        self.billing_month = billing_month
        super().__init__(
            f"Billing month must be the 1st of a month (YYYY-MM-01), got {billing_month!r}"
        )


class PayrollVersionValidationError(BillingError):
    """Raised when a version cannot be built from the supplied snapshot."""

    def __init__(self, payroll_id: UUID | None, reason: str):
        self.payroll_id = payroll_id
        self.reason = reason
        super().__init__(reason)


class PayrollVersionConflictError(BillingError):
    """Raised when the snapshot is no longer the current version."""

    def __init__(self, payroll_id: UUID):
        self.payroll_id = payroll_id
        super().__init__(
            f"Payroll {payroll_id} is not the current version (already superseded). "
            "Reload the latest version and retry."
        )


class CompletionMetricsError(BillingError):
    """Base class for completion-metrics request errors."""


class CompletionMetricsValidationError(CompletionMetricsError):
    """Raised when metrics fail validation."""


class PayrollDateNotFoundError(CompletionMetricsError):
    """Raised when the referenced payroll date does not exist."""

    def __init__(self, payroll_date_id: UUID):
        self.payroll_date_id = payroll_date_id
        super().__init__("Payroll date not found")


class CompletionMetricsNotFoundError(CompletionMetricsError):
    """Raised when updating metrics that were never recorded."""

    def __init__(self, payroll_date_id: UUID):
        self.payroll_date_id = payroll_date_id
        super().__init__(
            "Completion metrics not found. Use POST to create new metrics."
        )


class CompletionMetricsExistError(CompletionMetricsError):
    """Raised when creating metrics for a date that already has them."""

    def __init__(self, payroll_date_id: UUID):
        self.payroll_date_id = payroll_date_id
        super().__init__(
            "Completion metrics already exist for this payroll date. Use PUT to update."
        )
