"""ORM models."""

from payroll_billing.models.base import Base, TimestampMixin, UpdatedAtMixin
from payroll_billing.models.billing import (
    GENERATED_FROM_COMPLETION,
    GENERATED_FROM_RECURRING,
    BillingEventLog,
    BillingItem,
    PayrollCompletionMetrics,
    RecurringBillingLog,
    RecurringService,
)
from payroll_billing.models.client import Client
from payroll_billing.models.payroll import (
    Holiday,
    Payroll,
    PayrollCycle,
    PayrollDate,
    PayrollDateType,
    PayrollNote,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "GENERATED_FROM_COMPLETION",
    "GENERATED_FROM_RECURRING",
    "BillingEventLog",
    "BillingItem",
    "PayrollCompletionMetrics",
    "RecurringBillingLog",
    "RecurringService",
    "Client",
    "Holiday",
    "Payroll",
    "PayrollCycle",
    "PayrollDate",
    "PayrollDateType",
    "PayrollNote",
]
