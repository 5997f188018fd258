"""Billing and schedule calculators."""

from payroll_billing.calculators.completion_fees import (
    CompletionFeeSchedule,
    CompletionMetricsInput,
    has_billable_activity,
)
from payroll_billing.calculators.proration import calculate_fee_amount, describe_proration
from payroll_billing.calculators.schedule import ScheduledDate, build_schedule
from payroll_billing.calculators.types import (
    ClientActivityWindow,
    FeeLine,
    ServiceConfig,
    quantize_amount,
)

__all__ = [
    "CompletionFeeSchedule",
    "CompletionMetricsInput",
    "has_billable_activity",
    "calculate_fee_amount",
    "describe_proration",
    "ScheduledDate",
    "build_schedule",
    "ClientActivityWindow",
    "FeeLine",
    "ServiceConfig",
    "quantize_amount",
]
