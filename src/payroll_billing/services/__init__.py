"""Billing and versioning services."""

from payroll_billing.services.billing_store import BillingStore
from payroll_billing.services.completion_billing import (
    CompletionBillingResult,
    CompletionMetricsBillingAdapter,
    CompletionMetricsOutcome,
    CompletionMetricsService,
)
from payroll_billing.services.date_regeneration import (
    DateRegenerationService,
    RegenerationOutcome,
    ScheduleDateRegenerationService,
)
from payroll_billing.services.eligibility import (
    STANDARD_SERVICES,
    LifecycleActivityProvider,
    StandardEligibilityPolicy,
    load_service_catalog,
)
from payroll_billing.services.recurring_billing import (
    GeneratedItem,
    RecurringBillingGenerator,
    RecurringBillingResult,
)
from payroll_billing.services.versioning import (
    DateRegenerationInfo,
    PayrollVersionManager,
    VersionResult,
    get_version_reason,
    requires_versioning,
)

__all__ = [
    "BillingStore",
    "CompletionBillingResult",
    "CompletionMetricsBillingAdapter",
    "CompletionMetricsOutcome",
    "CompletionMetricsService",
    "DateRegenerationService",
    "RegenerationOutcome",
    "ScheduleDateRegenerationService",
    "STANDARD_SERVICES",
    "LifecycleActivityProvider",
    "StandardEligibilityPolicy",
    "load_service_catalog",
    "GeneratedItem",
    "RecurringBillingGenerator",
    "RecurringBillingResult",
    "DateRegenerationInfo",
    "PayrollVersionManager",
    "VersionResult",
    "get_version_reason",
    "requires_versioning",
]
