"""Sandwich-leave adjudicator.

Decides how many balance-days an application costs. Leave touching a weekend
from a Friday or a Monday is charged as if the weekend were taken too:

    1. Friday → Monday, four calendar days          → 4
    2. Friday + Saturday + Sunday                   → 4
    3. Saturday + Sunday + Monday                   → 4
    4. a single Friday or Monday
       a. approved, with an approved single-day sibling on the opposite
          side of the same weekend                  → 2 (4 across the pair)
       b. approved, no sibling                      → 1
       c. not (yet) approved                        → 3
    5. anything else                                → working days

The first matching row wins. Results depend only on stored state at call
time, so callers may re-run the adjudicator freely.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveStatus, SandwichRule
from backend.common.exceptions import NotFoundException
from backend.core_hr.models import Employee
from backend.leave.calendar import (
    count_working_days,
    day_breakdown,
    is_friday,
    is_monday,
    load_holidays,
)
from backend.leave.models import LeaveApplication

HALF_DAY = Decimal("0.5")
WEEKEND_SPAN = timedelta(days=3)

_REASONS: dict[SandwichRule, str] = {
    SandwichRule.continuous_fri_mon: "Sandwich leave: Continuous Friday to Monday (4 days deducted)",
    SandwichRule.friday_weekend: "Sandwich leave: Friday + Weekend (4 days deducted)",
    SandwichRule.weekend_monday: "Sandwich leave: Weekend + Monday (4 days deducted)",
    SandwichRule.paired_fri_mon: "Sandwich leave: Separate Friday/Monday applications (2 days each, 4 total)",
    SandwichRule.single_fri_mon_approved: "Single Friday/Monday leave (approved - 1 day)",
    SandwichRule.single_fri_mon_unapproved: "Single Friday/Monday leave (unapproved - 3 days sandwich penalty)",
    SandwichRule.regular: "Regular leave (actual working days excluding holidays)",
}


@dataclass(frozen=True)
class SandwichCalculation:
    actual_days: Decimal
    deducted_days: Decimal
    is_sandwich: bool
    reason: str
    rule: SandwichRule


@dataclass(frozen=True)
class SandwichPreview:
    calculation: SandwichCalculation
    total_days: int
    working_days: int
    weekend_days: int
    holiday_days: int
    sandwich_days: Decimal
    has_separate_applications: bool


def _result(
    rule: SandwichRule, actual: Decimal, deducted: Decimal, is_sandwich: bool
) -> SandwichCalculation:
    return SandwichCalculation(
        actual_days=actual,
        deducted_days=deducted,
        is_sandwich=is_sandwich,
        reason=_REASONS[rule],
        rule=rule,
    )


def sibling_date(d: date) -> Optional[date]:
    """The opposite side of the weekend for a Friday or Monday, else None."""
    if is_friday(d):
        return d + WEEKEND_SPAN
    if is_monday(d):
        return d - WEEKEND_SPAN
    return None


async def find_sibling(
    db: AsyncSession,
    employee_id: uuid.UUID,
    day: date,
    *,
    statuses: tuple[LeaveStatus, ...] = (LeaveStatus.approved,),
    exclude_application_id: Optional[uuid.UUID] = None,
    lock: bool = False,
) -> Optional[LeaveApplication]:
    """Single-day application across the weekend from ``day``, if any.

    With ``lock`` the row is selected ``FOR UPDATE`` so only one transaction
    re-prices it at a time.
    """
    other_day = sibling_date(day)
    if other_day is None:
        return None

    query = select(LeaveApplication).where(
        LeaveApplication.employee_id == employee_id,
        LeaveApplication.start_date == other_day,
        LeaveApplication.end_date == other_day,
        LeaveApplication.status.in_(statuses),
    )
    if exclude_application_id is not None:
        query = query.where(LeaveApplication.id != exclude_application_id)
    query = query.order_by(LeaveApplication.applied_at, LeaveApplication.id).limit(1)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalars().first()


async def adjudicate(
    db: AsyncSession,
    employee_id: uuid.UUID,
    start: date,
    end: date,
    is_half_day: bool,
    status: LeaveStatus,
    applied_at: Optional[datetime] = None,
    *,
    exclude_application_id: Optional[uuid.UUID] = None,
) -> SandwichCalculation:
    """Price one application against the decision table.

    ``status`` is the status the application is being evaluated *for*: the
    ledger passes ``approved`` on approval, previews pass ``pending``.
    ``applied_at`` is accepted for callers that record it alongside the
    result but does not affect the outcome.
    """
    holidays = await load_holidays(db, start, end)
    working = count_working_days(start, end, holidays)
    actual = HALF_DAY if is_half_day else Decimal(working)
    span = (end - start).days + 1

    if is_friday(start) and is_monday(end) and span == 4:
        return _result(SandwichRule.continuous_fri_mon, actual, Decimal(4), True)

    if is_friday(start) and span == 3 and end == start + timedelta(days=2):
        return _result(SandwichRule.friday_weekend, actual, Decimal(4), True)

    if is_monday(end) and span == 3 and start == end - timedelta(days=2):
        return _result(SandwichRule.weekend_monday, actual, Decimal(4), True)

    if start == end and (is_friday(start) or is_monday(start)):
        if status == LeaveStatus.approved:
            sibling = await find_sibling(
                db, employee_id, start,
                exclude_application_id=exclude_application_id,
            )
            if sibling is not None:
                return _result(SandwichRule.paired_fri_mon, actual, Decimal(2), True)
            return _result(
                SandwichRule.single_fri_mon_approved, actual, Decimal(1), False
            )
        return _result(
            SandwichRule.single_fri_mon_unapproved, actual, Decimal(3), True
        )

    return _result(SandwichRule.regular, actual, actual, False)


async def preview(
    db: AsyncSession,
    employee_id: uuid.UUID,
    start: date,
    end: date,
    is_half_day: bool = False,
) -> SandwichPreview:
    """Read-only estimate of what a new application would be charged if
    submitted now (evaluated as pending)."""
    emp = await db.execute(
        select(Employee.id).where(Employee.id == employee_id)
    )
    if emp.scalar() is None:
        raise NotFoundException("Employee", str(employee_id))

    calculation = await adjudicate(
        db, employee_id, start, end, is_half_day, LeaveStatus.pending,
    )
    breakdown = day_breakdown(start, end, await load_holidays(db, start, end))

    has_separate = False
    if start == end:
        sibling = await find_sibling(
            db, employee_id, start,
            statuses=(LeaveStatus.pending, LeaveStatus.approved),
        )
        has_separate = sibling is not None

    return SandwichPreview(
        calculation=calculation,
        total_days=breakdown.total_days,
        working_days=breakdown.working_days,
        weekend_days=breakdown.weekend_days,
        holiday_days=breakdown.holiday_days,
        sandwich_days=max(
            Decimal(0), calculation.deducted_days - calculation.actual_days
        ),
        has_separate_applications=has_separate,
    )
