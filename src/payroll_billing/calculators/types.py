"""Type definitions for the billing calculators."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from payroll_billing.models import RecurringService

CENT = Decimal("0.01")
ZERO = Decimal("0")


def quantize_amount(amount: Decimal) -> Decimal:
    """Round a currency amount to cents (half up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def days_in_month(month: date) -> int:
    return calendar.monthrange(month.year, month.month)[1]


def end_of_month(month: date) -> date:
    return month.replace(day=days_in_month(month))


def is_first_of_month(value: date) -> bool:
    return value.day == 1


@dataclass(frozen=True)
class ServiceConfig:
    """Immutable snapshot of a recurring service catalog entry."""

    service_code: str
    service_name: str
    base_rate: Decimal
    new_client_proration: bool = True
    termination_proration: bool = True
    minimum_charge: Decimal | None = None
    auto_approval: bool = True
    description: str | None = None
    custom_rate: Decimal | None = None  # Per-client override of base_rate

    @property
    def effective_rate(self) -> Decimal:
        """Rate billed for a full month."""
        return self.custom_rate if self.custom_rate is not None else self.base_rate

    def with_custom_rate(self, rate: Decimal | None) -> ServiceConfig:
        """Copy of this config carrying a client-specific rate."""
        return ServiceConfig(
            service_code=self.service_code,
            service_name=self.service_name,
            base_rate=self.base_rate,
            new_client_proration=self.new_client_proration,
            termination_proration=self.termination_proration,
            minimum_charge=self.minimum_charge,
            auto_approval=self.auto_approval,
            description=self.description,
            custom_rate=rate,
        )

    @classmethod
    def from_model(cls, row: RecurringService) -> ServiceConfig:
        return cls(
            service_code=row.service_code,
            service_name=row.service_name,
            base_rate=Decimal(str(row.base_rate)),
            new_client_proration=row.new_client_proration,
            termination_proration=row.termination_proration,
            minimum_charge=(
                Decimal(str(row.minimum_charge))
                if row.minimum_charge is not None
                else None
            ),
            auto_approval=row.auto_approval,
            description=row.description,
        )


@dataclass(frozen=True)
class ClientActivityWindow:
    """A client's activity within one billing month.

    start_day/termination_day are 1-based days of the billing month and are
    only meaningful when the matching flag is set.
    active is False when the client started after, or terminated before, the
    billing month.
    """

    started_during_month: bool = False
    start_day: int = 1
    terminated_during_month: bool = False
    termination_day: int | None = None
    active: bool = True

    @classmethod
    def full_month(cls) -> ClientActivityWindow:
        return cls()

    @classmethod
    def for_month(
        cls,
        billing_month: date,
        started_on: date | None,
        terminated_on: date | None,
    ) -> ClientActivityWindow:
        """Derive the window from a client's lifecycle dates.

        A client starting on the 1st is active for the whole month, as is a
        client terminating on the last day.
        """
        month_end = end_of_month(billing_month)
        if (started_on is not None and started_on > month_end) or (
            terminated_on is not None and terminated_on < billing_month
        ):
            return cls(active=False)
        started = (
            started_on is not None
            and billing_month < started_on <= month_end
        )
        terminated = (
            terminated_on is not None
            and billing_month <= terminated_on < month_end
        )
        return cls(
            started_during_month=started,
            start_day=started_on.day if started else 1,
            terminated_during_month=terminated,
            termination_day=terminated_on.day if terminated else None,
        )


@dataclass(frozen=True)
class FeeLine:
    """A priced line produced by a fee schedule, before persistence."""

    service_code: str
    service_name: str
    quantity: Decimal
    unit_price: Decimal
    metric: str
    auto_approval: bool = True

    @property
    def amount(self) -> Decimal:
        return quantize_amount(self.quantity * self.unit_price)
