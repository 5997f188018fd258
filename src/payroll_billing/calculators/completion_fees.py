"""Volume-based fee schedule applied to payroll completion metrics."""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal

from payroll_billing.calculators.types import FeeLine


@dataclass
class CompletionMetricsInput:
    """Counts captured when a payroll run is completed."""

    payslips_processed: int = 0
    employees_processed: int = 0
    new_starters: int = 0
    terminations: int = 0
    leave_calculations: int = 0
    bonus_payments: int = 0
    tax_adjustments: int = 0
    super_contributions: int = 0
    workers_comp_claims: int = 0
    garnishment_orders: int = 0
    payg_summaries: int | None = None
    fbt_calculations: int | None = None
    exceptions_handled: int = 0
    corrections_required: int = 0
    client_communications: int = 0
    generation_notes: str | None = None

    def counts(self) -> dict[str, int]:
        """All numeric metrics, with missing optional counts as 0."""
        return {
            f.name: getattr(self, f.name) or 0
            for f in fields(self)
            if f.name != "generation_notes"
        }


# Metrics that make a run billable even with zero payslips
SIGNIFICANT_ACTIVITY_METRICS = (
    "new_starters",
    "terminations",
    "leave_calculations",
    "bonus_payments",
    "tax_adjustments",
    "super_contributions",
    "payg_summaries",
    "fbt_calculations",
)


def has_significant_activity(metrics: CompletionMetricsInput) -> bool:
    return any((getattr(metrics, name) or 0) > 0 for name in SIGNIFICANT_ACTIVITY_METRICS)


def has_billable_activity(metrics: CompletionMetricsInput) -> bool:
    """Whether completion billing should run for these metrics."""
    return metrics.payslips_processed > 0 or has_significant_activity(metrics)


@dataclass(frozen=True)
class CompletionFee:
    """Per-unit fee charged for one completion metric."""

    metric: str
    service_code: str
    service_name: str
    unit_price: Decimal
    auto_approval: bool = True


STANDARD_COMPLETION_FEES: tuple[CompletionFee, ...] = (
    CompletionFee("payslips_processed", "PAYSLIP_PROCESSING", "Payslip Processing", Decimal("8.50")),
    CompletionFee("new_starters", "NEW_STARTER_SETUP", "New Starter Setup", Decimal("45.00")),
    CompletionFee("terminations", "TERMINATION_PROCESSING", "Termination Processing", Decimal("35.00")),
    CompletionFee("leave_calculations", "LEAVE_CALCULATION", "Leave Calculation", Decimal("12.00")),
    CompletionFee("bonus_payments", "BONUS_PAYMENT", "Bonus Payment Processing", Decimal("15.00")),
    CompletionFee("tax_adjustments", "TAX_ADJUSTMENT", "Tax Adjustment", Decimal("20.00")),
    CompletionFee("super_contributions", "SUPER_CONTRIBUTION", "Super Contribution Processing", Decimal("5.00")),
    CompletionFee("payg_summaries", "PAYG_SUMMARY", "PAYG Payment Summary", Decimal("25.00")),
    CompletionFee("fbt_calculations", "FBT_CALCULATION", "FBT Calculation", Decimal("60.00")),
)


class CompletionFeeSchedule:
    """Prices completion metrics into one line per nonzero metric."""

    def __init__(self, fees: tuple[CompletionFee, ...] = STANDARD_COMPLETION_FEES):
        codes = [fee.service_code for fee in fees]
        if len(codes) != len(set(codes)):
            raise ValueError("Completion fee service codes must be unique")
        self.fees = fees

    def price(self, metrics: CompletionMetricsInput) -> list[FeeLine]:
        counts = metrics.counts()
        lines: list[FeeLine] = []
        for fee in self.fees:
            quantity = counts.get(fee.metric, 0)
            if quantity <= 0:
                continue
            lines.append(
                FeeLine(
                    service_code=fee.service_code,
                    service_name=fee.service_name,
                    quantity=Decimal(quantity),
                    unit_price=fee.unit_price,
                    metric=fee.metric,
                    auto_approval=fee.auto_approval,
                )
            )
        return lines
