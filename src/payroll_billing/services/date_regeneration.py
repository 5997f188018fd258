"""Reassignment of future payroll dates when a new payroll version takes over."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_billing.calculators.schedule import add_months, build_schedule
from payroll_billing.config import get_settings
from payroll_billing.models import Holiday, Payroll, PayrollCycle, PayrollDate, PayrollDateType

logger = logging.getLogger(__name__)

# Processing dates can fall this far before the first EFT date of a window
HOLIDAY_LOOKBACK_DAYS = 31


@dataclass(frozen=True)
class RegenerationOutcome:
    """Counts of dates moved off the old version and onto the new one."""

    dates_removed: int = 0
    dates_generated: int = 0


class DateRegenerationService(Protocol):
    """Moves ownership of dates on/after boundary from old to new version."""

    async def regenerate(
        self, old_payroll: Payroll, new_payroll: Payroll, boundary: date
    ) -> RegenerationOutcome: ...


class ScheduleDateRegenerationService:
    """Regenerates payroll dates from the schedule calculator.

    Scheduled dates on/after the boundary are removed from every other
    version of the chain, including pending future versions the new one
    replaces. Completed dates stay attributed to history.
    """

    def __init__(self, session: AsyncSession, horizon_months: int | None = None):
        self.session = session
        self.horizon_months = horizon_months or get_settings().date_generation_horizon_months

    async def regenerate(
        self, old_payroll: Payroll, new_payroll: Payroll, boundary: date
    ) -> RegenerationOutcome:
        chain_id = old_payroll.parent_payroll_id or old_payroll.id
        removed = await self.remove_future_dates(
            chain_id, boundary, keep_payroll_id=new_payroll.id
        )
        generated = await self.generate_dates(new_payroll, boundary)
        logger.info(
            "Regenerated dates from %s: %d removed from %s, %d generated for %s",
            boundary,
            removed,
            chain_id,
            generated,
            new_payroll.id,
        )
        return RegenerationOutcome(dates_removed=removed, dates_generated=generated)

    async def remove_future_dates(
        self, chain_id: UUID, boundary: date, keep_payroll_id: UUID | None = None
    ) -> int:
        """Delete scheduled dates on/after boundary from versions of a chain."""
        versions = select(Payroll.id).where(Payroll.parent_payroll_id == chain_id)
        if keep_payroll_id is not None:
            versions = versions.where(Payroll.id != keep_payroll_id)
        result = await self.session.execute(
            delete(PayrollDate)
            .where(
                PayrollDate.payroll_id.in_(versions),
                PayrollDate.adjusted_eft_date >= boundary,
                PayrollDate.status == "scheduled",
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def generate_dates(self, payroll: Payroll, start: date) -> int:
        """Insert scheduled dates for payroll from start through the horizon."""
        if payroll.cycle_id is None or payroll.date_type_id is None:
            logger.warning(
                "Payroll %s has no cycle or date type; no dates generated", payroll.id
            )
            return 0

        cycle = await self.session.get(PayrollCycle, payroll.cycle_id)
        date_type = await self.session.get(PayrollDateType, payroll.date_type_id)
        if cycle is None or date_type is None:
            logger.warning(
                "Payroll %s references unknown cycle or date type; no dates generated",
                payroll.id,
            )
            return 0

        end = add_months(start, self.horizon_months) - timedelta(days=1)
        holidays = await self._holidays(start - timedelta(days=HOLIDAY_LOOKBACK_DAYS), end)
        schedule = build_schedule(
            cycle.name,
            date_type.name,
            payroll.date_value,
            start,
            end,
            payroll.processing_days_before_eft,
            holidays,
        )

        existing = await self.session.execute(
            select(PayrollDate.original_eft_date).where(
                PayrollDate.payroll_id == payroll.id
            )
        )
        taken = set(existing.scalars().all())

        created = 0
        for occurrence in schedule:
            if occurrence.original_eft_date in taken:
                continue
            self.session.add(
                PayrollDate(
                    payroll_id=payroll.id,
                    original_eft_date=occurrence.original_eft_date,
                    adjusted_eft_date=occurrence.adjusted_eft_date,
                    processing_date=occurrence.processing_date,
                    status="scheduled",
                )
            )
            created += 1
        await self.session.flush()
        return created

    async def _holidays(self, start: date, end: date) -> set[date]:
        result = await self.session.execute(
            select(Holiday.holiday_date).where(
                Holiday.holiday_date >= start, Holiday.holiday_date <= end
            )
        )
        return set(result.scalars().all())
