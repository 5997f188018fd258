"""Billing generated from payroll completion metrics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_billing.calculators.completion_fees import (
    CompletionFeeSchedule,
    CompletionMetricsInput,
    has_billable_activity,
)
from payroll_billing.calculators.types import ZERO
from payroll_billing.config import SYSTEM_USER_ID
from payroll_billing.exceptions import (
    CompletionMetricsExistError,
    CompletionMetricsNotFoundError,
    CompletionMetricsValidationError,
    PayrollDateNotFoundError,
)
from payroll_billing.models import (
    BillingItem,
    Payroll,
    PayrollCompletionMetrics,
    PayrollDate,
)
from payroll_billing.models.base import utcnow
from payroll_billing.services.billing_store import BillingStore

logger = logging.getLogger(__name__)

CORE_METRICS = ("payslips_processed", "employees_processed")
NULLABLE_METRICS = ("payg_summaries", "fbt_calculations", "generation_notes")
METRIC_FIELDS = tuple(f.name for f in fields(CompletionMetricsInput))


@dataclass
class CompletionBillingResult:
    """Outcome of pricing one payroll completion."""

    success: bool = True
    items_created: int = 0
    total_amount: Decimal = ZERO
    errors: list[str] = field(default_factory=list)
    items: list[BillingItem] = field(default_factory=list)


@dataclass(frozen=True)
class CompletionMetricsOutcome:
    """Result of recording or updating completion metrics."""

    success: bool
    metrics_id: UUID | None
    billing_generated: bool
    items_created: int
    total_amount: Decimal
    message: str


def validate_metrics(metrics: CompletionMetricsInput) -> None:
    """Reject negative counts."""
    for name in CORE_METRICS:
        if getattr(metrics, name) < 0:
            raise CompletionMetricsValidationError("Core metrics cannot be negative")
    for name, value in metrics.counts().items():
        if value < 0:
            raise CompletionMetricsValidationError(f"{name} cannot be negative")


async def load_payroll_date(session: AsyncSession, payroll_date_id: UUID) -> PayrollDate:
    """Payroll date with its payroll and client loaded, or PayrollDateNotFoundError."""
    result = await session.execute(
        select(PayrollDate)
        .where(PayrollDate.id == payroll_date_id)
        .options(selectinload(PayrollDate.payroll).selectinload(Payroll.client))
    )
    payroll_date = result.scalar_one_or_none()
    if payroll_date is None:
        raise PayrollDateNotFoundError(payroll_date_id)
    return payroll_date


class CompletionMetricsBillingAdapter:
    """Turns one payroll completion into tier-1 billing items.

    Only items tagged ``completion_metrics`` for the payroll date are ever
    created or deleted here; recurring items are never touched.
    """

    def __init__(
        self,
        session: AsyncSession,
        fee_schedule: CompletionFeeSchedule | None = None,
    ):
        self.session = session
        self.store = BillingStore(session)
        self.fee_schedule = fee_schedule or CompletionFeeSchedule()

    async def generate_from_completion(
        self,
        payroll_date_id: UUID,
        metrics: CompletionMetricsInput,
        completed_by_user_id: UUID | None,
    ) -> CompletionBillingResult:
        result = CompletionBillingResult()
        if not has_billable_activity(metrics):
            logger.info("No billable activity for payroll date %s", payroll_date_id)
            return result

        payroll_date = await load_payroll_date(self.session, payroll_date_id)
        client_id = payroll_date.payroll.client_id
        if client_id is None:
            result.success = False
            result.errors.append("Payroll has no client assigned")
            return result

        period_start = payroll_date.adjusted_eft_date.replace(day=1)
        for line in self.fee_schedule.price(metrics):
            try:
                item = await self.store.insert_completion_item(
                    client_id=client_id,
                    payroll_date_id=payroll_date_id,
                    line=line,
                    period_start=period_start,
                    created_by_user_id=completed_by_user_id,
                )
            except Exception as e:
                logger.exception(
                    "Completion billing failed for %s on payroll date %s",
                    line.service_code,
                    payroll_date_id,
                )
                result.errors.append(f"{line.service_code}: {e}")
                continue
            if item is None:
                continue
            result.items.append(item)
            result.items_created += 1
            result.total_amount += item.total_amount

        result.success = not result.errors
        logger.info(
            "Completion billing for payroll date %s: %d items, total %s",
            payroll_date_id,
            result.items_created,
            result.total_amount,
        )
        return result

    async def regenerate_from_completion(
        self,
        payroll_date_id: UUID,
        metrics: CompletionMetricsInput,
        completed_by_user_id: UUID | None,
    ) -> CompletionBillingResult:
        """Replace every completion item for the payroll date in one savepoint."""
        async with self.session.begin_nested():
            deleted = await self.store.delete_completion_items(payroll_date_id)
            logger.info(
                "Deleted %d completion billing items for payroll date %s",
                deleted,
                payroll_date_id,
            )
            return await self.generate_from_completion(
                payroll_date_id, metrics, completed_by_user_id
            )


class CompletionMetricsService:
    """Records completion metrics and drives completion billing."""

    def __init__(
        self,
        session: AsyncSession,
        adapter: CompletionMetricsBillingAdapter | None = None,
    ):
        self.session = session
        self.adapter = adapter or CompletionMetricsBillingAdapter(session)
        self.store = BillingStore(session)

    async def _metrics_for(self, payroll_date_id: UUID) -> PayrollCompletionMetrics | None:
        result = await self.session.execute(
            select(PayrollCompletionMetrics).where(
                PayrollCompletionMetrics.payroll_date_id == payroll_date_id
            )
        )
        return result.scalar_one_or_none()

    def _apply(self, row: PayrollCompletionMetrics, metrics: CompletionMetricsInput) -> None:
        for name in METRIC_FIELDS:
            value = getattr(metrics, name)
            if value is None and name not in NULLABLE_METRICS:
                value = 0
            setattr(row, name, value)

    async def create(
        self,
        payroll_date_id: UUID,
        completed_by: UUID,
        metrics: CompletionMetricsInput,
        generate_billing: bool = True,
    ) -> CompletionMetricsOutcome:
        validate_metrics(metrics)
        payroll_date = await load_payroll_date(self.session, payroll_date_id)
        if await self._metrics_for(payroll_date_id) is not None:
            raise CompletionMetricsExistError(payroll_date_id)

        now = utcnow()
        row = PayrollCompletionMetrics(
            payroll_date_id=payroll_date_id,
            completed_by=completed_by,
            completed_at=now,
            billing_generated=False,
        )
        self._apply(row, metrics)
        self.session.add(row)

        payroll_date.status = "completed"
        payroll_date.completed_at = now
        payroll_date.completed_by_user_id = completed_by
        await self.session.flush()

        billing = None
        if generate_billing and has_billable_activity(metrics):
            billing = await self.adapter.generate_from_completion(
                payroll_date_id, metrics, completed_by
            )
            if billing.success:
                row.billing_generated = True
                row.billing_generated_at = utcnow()
                await self.session.flush()
            else:
                logger.error(
                    "Completion billing failed for payroll date %s: %s",
                    payroll_date_id,
                    billing.errors,
                )

        payroll = payroll_date.payroll
        client = payroll.client
        billed = billing is not None and billing.success
        await self.store.record_event(
            "payroll_completion_with_metrics",
            f"Payroll {payroll.name} completed with {metrics.payslips_processed} "
            "payslips processed",
            {
                "payroll_date_id": str(payroll_date_id),
                "client_id": str(client.id) if client else None,
                "client_name": client.name if client else None,
                "payroll_name": payroll.name,
                "metrics_id": str(row.id),
                "billing_generated": billed,
                "items_created": billing.items_created if billing else 0,
                "total_amount": str(billing.total_amount if billing else ZERO),
            },
            created_by_user_id=completed_by,
        )

        return CompletionMetricsOutcome(
            success=True,
            metrics_id=row.id,
            billing_generated=billed,
            items_created=billing.items_created if billing else 0,
            total_amount=billing.total_amount if billing else ZERO,
            message=(
                f"Payroll completed and {billing.items_created} billing items generated"
                if billed
                else "Payroll completed successfully"
            ),
        )

    async def update(
        self,
        payroll_date_id: UUID,
        completed_by: UUID | None,
        metrics: CompletionMetricsInput,
        generate_billing: bool = False,
    ) -> CompletionMetricsOutcome:
        validate_metrics(metrics)
        row = await self._metrics_for(payroll_date_id)
        if row is None:
            raise CompletionMetricsNotFoundError(payroll_date_id)

        self._apply(row, metrics)
        if generate_billing:
            row.billing_generated = False
            row.billing_generated_at = None
        await self.session.flush()

        billing = None
        if generate_billing:
            billing = await self.adapter.regenerate_from_completion(
                payroll_date_id, metrics, completed_by or SYSTEM_USER_ID
            )
            if billing.success and billing.items_created:
                row.billing_generated = True
                row.billing_generated_at = utcnow()
                await self.session.flush()
            await self.store.record_event(
                "completion_billing_regenerated",
                f"Completion billing regenerated for payroll date {payroll_date_id}",
                {
                    "payroll_date_id": str(payroll_date_id),
                    "metrics_id": str(row.id),
                    "items_created": billing.items_created,
                    "total_amount": str(billing.total_amount),
                },
                created_by_user_id=completed_by or SYSTEM_USER_ID,
            )

        billed = billing is not None and billing.success and billing.items_created > 0
        return CompletionMetricsOutcome(
            success=True,
            metrics_id=row.id,
            billing_generated=billed,
            items_created=billing.items_created if billing else 0,
            total_amount=billing.total_amount if billing else ZERO,
            message=(
                f"Metrics updated and {billing.items_created} billing items regenerated"
                if billed
                else "Completion metrics updated successfully"
            ),
        )

    async def get(
        self, payroll_date_id: UUID
    ) -> tuple[PayrollCompletionMetrics | None, list[BillingItem]]:
        """Recorded metrics and completion billing items for a payroll date."""
        row = await self._metrics_for(payroll_date_id)
        items = await self.store.completion_items(payroll_date_id)
        return row, items
