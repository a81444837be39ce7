"""Calendar classification and working-day counting.

Everything here except the two loaders is pure: callers fetch the holiday set
for a range once and pass it down.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import AbstractSet, Iterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.exceptions import ValidationException
from backend.leave.models import Holiday

FRIDAY = 4
SATURDAY = 5
SUNDAY = 6
MONDAY = 0


# ── Predicates ──────────────────────────────────────────────────────


def is_friday(d: date) -> bool:
    return d.weekday() == FRIDAY


def is_monday(d: date) -> bool:
    return d.weekday() == MONDAY


def is_weekend(d: date) -> bool:
    return d.weekday() in (SATURDAY, SUNDAY)


def is_holiday(d: date, holidays: AbstractSet[date]) -> bool:
    return d in holidays


# ── Holiday lookup ──────────────────────────────────────────────────


async def load_holidays(db: AsyncSession, start: date, end: date) -> frozenset[date]:
    """Non-optional holiday dates within ``start..end`` inclusive."""
    result = await db.execute(
        select(Holiday.date).where(
            Holiday.date >= start,
            Holiday.date <= end,
            Holiday.is_optional.is_(False),
        )
    )
    return frozenset(result.scalars().all())


async def is_holiday_on(db: AsyncSession, d: date) -> bool:
    return is_holiday(d, await load_holidays(db, d, d))


# ── Counting ────────────────────────────────────────────────────────


def iter_dates(start: date, end: date) -> Iterator[date]:
    if end < start:
        raise ValidationException(
            {"end_date": ["End date must be on or after start date."]}
        )
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def count_working_days(
    start: date, end: date, holidays: AbstractSet[date] = frozenset()
) -> int:
    """Days in the inclusive range that are neither weekend nor holiday."""
    return sum(
        1
        for d in iter_dates(start, end)
        if not is_weekend(d) and not is_holiday(d, holidays)
    )


@dataclass(frozen=True)
class DayBreakdown:
    total_days: int
    working_days: int
    weekend_days: int
    holiday_days: int


def day_breakdown(
    start: date, end: date, holidays: AbstractSet[date] = frozenset()
) -> DayBreakdown:
    """Split the range into working, weekend and holiday days.

    A holiday falling on a weekend is counted once, as a weekend day.
    """
    total = working = weekend = holiday = 0
    for d in iter_dates(start, end):
        total += 1
        if is_weekend(d):
            weekend += 1
        elif is_holiday(d, holidays):
            holiday += 1
        else:
            working += 1
    return DayBreakdown(
        total_days=total,
        working_days=working,
        weekend_days=weekend,
        holiday_days=holiday,
    )
