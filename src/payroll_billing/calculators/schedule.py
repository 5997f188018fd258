"""EFT date generation for payroll schedules."""

from __future__ import annotations

from collections.abc import Collection, Iterator
from dataclasses import dataclass
from datetime import date, timedelta

from payroll_billing.calculators.types import days_in_month

CYCLES = ("weekly", "fortnightly", "bi_monthly", "monthly", "quarterly")
DATE_TYPES = ("eom", "som", "fixed_date", "dow")

QUARTER_END_MONTHS = (3, 6, 9, 12)
MID_MONTH_DAY = 15


class UnsupportedScheduleError(Exception):
    """Raised when a cycle/date type combination cannot produce dates."""

    def __init__(self, cycle: str | None, date_type: str | None, reason: str):
        self.cycle = cycle
        self.date_type = date_type
        self.reason = reason
        super().__init__(
            f"Cannot generate dates for cycle={cycle!r} date_type={date_type!r}: {reason}"
        )


@dataclass(frozen=True)
class ScheduledDate:
    """One generated payroll occurrence."""

    original_eft_date: date
    adjusted_eft_date: date
    processing_date: date


def is_business_day(day: date, holidays: Collection[date] = ()) -> bool:
    return day.weekday() < 5 and day not in holidays


def adjust_to_business_day(day: date, holidays: Collection[date] = ()) -> date:
    """Roll a date back to the closest earlier business day."""
    while not is_business_day(day, holidays):
        day -= timedelta(days=1)
    return day


def subtract_business_days(
    day: date, business_days: int, holidays: Collection[date] = ()
) -> date:
    """Step back the given number of business days from day."""
    remaining = business_days
    while remaining > 0:
        day -= timedelta(days=1)
        if is_business_day(day, holidays):
            remaining -= 1
    return day


def add_months(day: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    first = date(year, month, 1)
    return first.replace(day=min(day.day, days_in_month(first)))


def _iter_months(start: date, end: date) -> Iterator[date]:
    current = start.replace(day=1)
    while current <= end:
        yield current
        current = add_months(current, 1)


def _monthly_day(month: date, date_type: str, date_value: int | None) -> date:
    if date_type == "eom":
        return month.replace(day=days_in_month(month))
    if date_type == "som":
        return month
    if date_type == "fixed_date":
        if not date_value or not 1 <= date_value <= 31:
            raise UnsupportedScheduleError(
                "monthly", date_type, "fixed_date needs a date_value between 1 and 31"
            )
        return month.replace(day=min(date_value, days_in_month(month)))
    raise UnsupportedScheduleError("monthly", date_type, "not a monthly date type")


def _weekly_dates(
    cycle: str, step_days: int, date_value: int | None, start: date, end: date
) -> Iterator[date]:
    if not date_value or not 1 <= date_value <= 5:
        raise UnsupportedScheduleError(
            cycle, "dow", "dow needs a date_value between 1 (Mon) and 5 (Fri)"
        )
    offset = (date_value - 1 - start.weekday()) % 7
    current = start + timedelta(days=offset)
    while current <= end:
        yield current
        current += timedelta(days=step_days)


def generate_eft_dates(
    cycle: str,
    date_type: str,
    date_value: int | None,
    start: date,
    end: date,
) -> list[date]:
    """Unadjusted EFT dates for a schedule between start and end inclusive."""
    if cycle not in CYCLES:
        raise UnsupportedScheduleError(cycle, date_type, "unknown cycle")
    if date_type not in DATE_TYPES:
        raise UnsupportedScheduleError(cycle, date_type, "unknown date type")
    if end < start:
        return []

    if cycle in ("weekly", "fortnightly"):
        if date_type != "dow":
            raise UnsupportedScheduleError(cycle, date_type, "weekly cycles need dow")
        step = 7 if cycle == "weekly" else 14
        return list(_weekly_dates(cycle, step, date_value, start, end))

    if date_type == "dow":
        raise UnsupportedScheduleError(cycle, date_type, "dow only applies to weekly cycles")

    candidates: list[date] = []
    for month in _iter_months(start, end):
        if cycle == "monthly":
            candidates.append(_monthly_day(month, date_type, date_value))
        elif cycle == "quarterly":
            if month.month in QUARTER_END_MONTHS:
                candidates.append(_monthly_day(month, date_type, date_value))
        else:  # bi_monthly
            if date_type == "som":
                candidates.extend([month, month.replace(day=MID_MONTH_DAY)])
            else:
                candidates.extend(
                    [
                        month.replace(day=MID_MONTH_DAY),
                        month.replace(day=days_in_month(month)),
                    ]
                )

    return [d for d in candidates if start <= d <= end]


def build_schedule(
    cycle: str,
    date_type: str,
    date_value: int | None,
    start: date,
    end: date,
    processing_days_before_eft: int,
    holidays: Collection[date] = (),
) -> list[ScheduledDate]:
    """Generate adjusted occurrences whose adjusted EFT date is on/after start."""
    schedule: list[ScheduledDate] = []
    for original in generate_eft_dates(cycle, date_type, date_value, start, end):
        adjusted = adjust_to_business_day(original, holidays)
        if adjusted < start:
            continue
        schedule.append(
            ScheduledDate(
                original_eft_date=original,
                adjusted_eft_date=adjusted,
                processing_date=subtract_business_days(
                    adjusted, processing_days_before_eft, holidays
                ),
            )
        )
    return schedule
