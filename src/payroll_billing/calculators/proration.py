"""Proration of monthly recurring service fees."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from payroll_billing.calculators.types import (
    ZERO,
    ClientActivityWindow,
    ServiceConfig,
    days_in_month,
    is_first_of_month,
)
from payroll_billing.exceptions import InvalidBillingMonthError

PRORATION_REASON = "Pro-rated for partial month"


def validate_billing_month(billing_month: date) -> None:
    """Raise InvalidBillingMonthError unless billing_month is a 1st."""
    if not isinstance(billing_month, date) or not is_first_of_month(billing_month):
        raise InvalidBillingMonthError(billing_month)


def calculate_fee_amount(
    service: ServiceConfig,
    billing_month: date,
    activity: ClientActivityWindow,
    custom_rate: Decimal | None = None,
) -> Decimal:
    """Compute the unrounded amount to bill for one service in one month.

    New-client proration takes precedence over termination proration and is
    the only branch floored at the service's minimum charge. Services with
    proration disabled always bill the full rate. Rounding to cents happens
    at persistence, not here.
    """
    validate_billing_month(billing_month)

    if not activity.active:
        return ZERO

    if custom_rate is not None:
        base = custom_rate
    else:
        base = service.effective_rate
    month_days = days_in_month(billing_month)

    if activity.started_during_month and service.new_client_proration:
        days_active = month_days - activity.start_day + 1
        amount = base * Decimal(days_active) / Decimal(month_days)
        if service.minimum_charge is not None:
            amount = max(amount, service.minimum_charge)
        return max(amount, ZERO)

    if activity.terminated_during_month and service.termination_proration:
        days_active = activity.termination_day or 0
        amount = base * Decimal(days_active) / Decimal(month_days)
        return max(amount, ZERO)

    return max(base, ZERO)


def is_prorated(service: ServiceConfig, amount: Decimal) -> bool:
    """Whether an amount is below the full monthly rate for the service."""
    return amount < service.effective_rate


def describe_proration(service: ServiceConfig, amount: Decimal) -> tuple[bool, str | None]:
    """Return (prorated, reason) for a computed amount."""
    prorated = is_prorated(service, amount)
    return prorated, PRORATION_REASON if prorated else None
