"""Leave balance ledger — the only writer of ``used_days`` and engine fields.

Status changes arrive through :meth:`LeaveLedger.apply_status_change`:

    ==========================  ==========================================
    old → new                   effect
    ==========================  ==========================================
    approved → not approved     give back stored ``deducted_days``, clear
                                engine fields, re-price a paired sibling
    not approved → approved     adjudicate, store, charge the balance,
                                re-price a paired sibling
    anything else               nothing
    ==========================  ==========================================

All writes happen on the caller's session. The request transaction commits
or rolls back the status change together with every balance it touched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import AdjustmentDirection, LeaveStatus
from backend.common.exceptions import NotFoundException, ValidationException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.leave.models import (
    LeaveApplication,
    LeaveBalance,
    LeaveBalanceAdjustment,
    LeaveType,
)
from backend.leave.sandwich import SandwichCalculation, adjudicate, find_sibling, sibling_date
from backend.notifications.service import (
    notify_balance_adjusted,
    notify_sandwich_repriced,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Leave-type names treated as the consolidated bucket when no type carries
# the configured code.
_BUCKET_NAMES = ("total leave", "total", "annual leave")


@dataclass(frozen=True)
class StatusChangeResult:
    """Balance movement caused by one status change."""

    delta: Decimal = ZERO
    sibling_id: Optional[uuid.UUID] = None
    sibling_delta: Decimal = ZERO


@dataclass(frozen=True)
class RecalculationResult:
    applications_updated: int
    balances_updated: int


def _previous_deduction(application: LeaveApplication) -> Decimal:
    if application.deducted_days is not None:
        return Decimal(application.deducted_days)
    return Decimal(application.days_count or 0)


def _to_amount(value: Union[Decimal, float, int, str]) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationException({"amount": ["Amount must be a number."]})
    if not amount.is_finite() or amount <= 0:
        raise ValidationException({"amount": ["Amount must be greater than zero."]})
    return amount


class LeaveLedger:
    """Balance ledger bound to one session (one transaction)."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._bucket_id: Optional[uuid.UUID] = None

    # ─────────────────────────────────────────────────────────────────
    # Balance rows
    # ─────────────────────────────────────────────────────────────────

    async def bucket_id(self) -> uuid.UUID:
        """Leave type every balance row is kept against, resolved once."""
        if self._bucket_id is not None:
            return self._bucket_id

        result = await self.db.execute(
            select(LeaveType.id).where(
                LeaveType.code == settings.LEAVE_BALANCE_TYPE_CODE
            )
        )
        bucket = result.scalar()
        if bucket is None:
            result = await self.db.execute(
                select(LeaveType.id)
                .where(func.lower(LeaveType.name).in_(_BUCKET_NAMES))
                .order_by(LeaveType.created_at)
                .limit(1)
            )
            bucket = result.scalar()
        if bucket is None:
            result = await self.db.execute(
                select(LeaveType.id).order_by(LeaveType.created_at).limit(1)
            )
            bucket = result.scalar()
        if bucket is None:
            raise NotFoundException("LeaveType", settings.LEAVE_BALANCE_TYPE_CODE)

        self._bucket_id = bucket
        return bucket

    async def get_balance(
        self, employee_id: uuid.UUID, year: int, *, lock: bool = False
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == await self.bucket_id(),
            LeaveBalance.year == year,
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _create_balance(self, employee_id: uuid.UUID, year: int) -> LeaveBalance:
        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type_id=await self.bucket_id(),
            year=year,
            allocated_days=ZERO,
            used_days=ZERO,
        )
        self.db.add(balance)
        await self.db.flush()
        return balance

    async def _lock_balances(
        self, application: LeaveApplication, *, create: bool = False
    ) -> None:
        """Lock every balance row a change to ``application`` may post to.

        Rows are taken in year order before anything is priced, so two
        transactions touching the same employee (including both halves of a
        Friday/Monday pair across New Year) queue here instead of pricing
        against each other's uncommitted state.
        """
        years = {application.start_date.year}
        other = sibling_date(application.start_date) if application.is_single_day else None
        if other is not None:
            years.add(other.year)

        for year in sorted(years):
            locked = await self.get_balance(application.employee_id, year, lock=True)
            if locked is None and create and year == application.start_date.year:
                await self._create_balance(application.employee_id, year)
                logger.warning(
                    "Created leave balance for employee %s year %s with no allocation",
                    application.employee_id, year,
                )

    async def lock_for_change(
        self, application: LeaveApplication, *, create: bool = False
    ) -> LeaveApplication:
        """Lock the balance rows, then the application, before a status change.

        Callers take these locks before writing the new status so that every
        transaction touching an employee's ledger acquires rows in the same
        order. The application is re-read under its lock.
        """
        await self._lock_balances(application, create=create)
        return await self._load_application(application.id)

    async def _post(
        self,
        employee_id: uuid.UUID,
        year: int,
        delta: Decimal,
        *,
        application_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        create: bool = True,
    ) -> Optional[LeaveBalance]:
        """Add ``delta`` to ``used_days`` of the locked balance row."""
        balance = await self.get_balance(employee_id, year, lock=True)
        if balance is None:
            if not create:
                return None
            balance = await self._create_balance(employee_id, year)
            logger.warning(
                "Created leave balance for employee %s year %s with no allocation",
                employee_id, year,
            )

        old_used = Decimal(balance.used_days)
        new_used = old_used + delta
        if new_used < ZERO:
            logger.warning(
                "Leave balance for employee %s year %s would go negative "
                "(used %s, change %s); clamping at 0",
                employee_id, year, old_used, delta,
            )
            new_used = ZERO
        allocated = Decimal(balance.allocated_days)
        if new_used > allocated:
            logger.warning(
                "Leave balance exceeded for employee %s year %s: "
                "allocated %s, used %s",
                employee_id, year, allocated, new_used,
            )

        balance.used_days = new_used
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action="ledger_debit" if delta > 0 else "ledger_credit",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values={"used_days": str(old_used)},
            new_values={
                "used_days": str(new_used),
                "delta": str(delta),
                "leave_application_id": str(application_id),
            },
        )
        return balance

    # ─────────────────────────────────────────────────────────────────
    # Status changes
    # ─────────────────────────────────────────────────────────────────

    async def _load_application(self, application_id: uuid.UUID) -> LeaveApplication:
        result = await self.db.execute(
            select(LeaveApplication)
            .where(LeaveApplication.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        application = result.scalars().first()
        if application is None:
            raise NotFoundException("LeaveApplication", str(application_id))
        return application

    async def _evaluate(self, application: LeaveApplication) -> SandwichCalculation:
        return await adjudicate(
            self.db,
            application.employee_id,
            application.start_date,
            application.end_date,
            application.is_half_day,
            application.status,
            application.applied_at,
            exclude_application_id=application.id,
        )

    @staticmethod
    def _store(application: LeaveApplication, calc: SandwichCalculation) -> None:
        application.deducted_days = calc.deducted_days
        application.is_sandwich = calc.is_sandwich
        application.sandwich_reason = calc.reason

    async def apply_status_change(
        self,
        application_id: uuid.UUID,
        old_status: LeaveStatus,
        new_status: LeaveStatus,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> StatusChangeResult:
        """Bring the ledger in line with a status the caller already set."""
        if old_status == new_status:
            return StatusChangeResult()
        if LeaveStatus.approved not in (old_status, new_status):
            return StatusChangeResult()

        application = await self._load_application(application_id)
        if application.status != new_status:
            raise ValidationException(
                {"status": [
                    f"Leave application is {application.status.value}, "
                    f"not {new_status.value}."
                ]}
            )
        year = application.start_date.year
        await self._lock_balances(application, create=new_status == LeaveStatus.approved)

        if old_status == LeaveStatus.approved:
            restored = _previous_deduction(application)
            application.deducted_days = None
            application.is_sandwich = False
            application.sandwich_reason = None
            await self.db.flush()

            if restored:
                await self._post(
                    application.employee_id, year, -restored,
                    application_id=application.id, actor_id=actor_id,
                )
            logger.info(
                "Leave %s left approved (%s): %s day(s) restored",
                application.id, new_status.value, restored,
            )
            sibling_id, sibling_delta = await self.resolve_pair(
                application, actor_id=actor_id
            )
            return StatusChangeResult(
                delta=-restored, sibling_id=sibling_id, sibling_delta=sibling_delta,
            )

        calc = await self._evaluate(application)
        self._store(application, calc)
        await self.db.flush()

        if calc.deducted_days:
            await self._post(
                application.employee_id, year, calc.deducted_days,
                application_id=application.id, actor_id=actor_id,
            )
        logger.info(
            "Leave %s approved: %s day(s) deducted (%s)",
            application.id, calc.deducted_days, calc.rule.value,
        )
        sibling_id, sibling_delta = await self.resolve_pair(
            application, actor_id=actor_id
        )
        return StatusChangeResult(
            delta=calc.deducted_days, sibling_id=sibling_id, sibling_delta=sibling_delta,
        )

    async def resolve_pair(
        self,
        application: LeaveApplication,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> tuple[Optional[uuid.UUID], Decimal]:
        """Re-price the approved Friday/Monday sibling of ``application``.

        Runs after ``application``'s own change is flushed, so the sibling's
        adjudication sees the new state. Returns the sibling id and the
        balance delta applied to it.
        """
        if not application.is_single_day or sibling_date(application.start_date) is None:
            return None, ZERO

        sibling = await find_sibling(
            self.db,
            application.employee_id,
            application.start_date,
            exclude_application_id=application.id,
            lock=True,
        )
        if sibling is None:
            return None, ZERO

        calc = await self._evaluate(sibling)
        old = _previous_deduction(sibling)
        delta = calc.deducted_days - old
        if (
            delta == 0
            and sibling.sandwich_reason == calc.reason
            and sibling.is_sandwich == calc.is_sandwich
        ):
            return sibling.id, ZERO

        self._store(sibling, calc)
        await self.db.flush()

        if delta:
            await self._post(
                sibling.employee_id, sibling.start_date.year, delta,
                application_id=sibling.id, actor_id=actor_id,
            )
            await notify_sandwich_repriced(self.db, sibling, delta)

        await create_audit_entry(
            self.db,
            action="pair_resolved",
            entity_type="leave_application",
            entity_id=sibling.id,
            actor_id=actor_id,
            old_values={"deducted_days": str(old)},
            new_values={
                "deducted_days": str(calc.deducted_days),
                "rule": calc.rule.value,
                "triggered_by": str(application.id),
            },
        )
        logger.info(
            "Re-priced paired leave %s: %s -> %s day(s)",
            sibling.id, old, calc.deducted_days,
        )
        return sibling.id, delta

    # ─────────────────────────────────────────────────────────────────
    # Manual adjustment
    # ─────────────────────────────────────────────────────────────────

    async def adjust_balance(
        self,
        employee_id: uuid.UUID,
        direction: Union[AdjustmentDirection, str],
        amount: Union[Decimal, float, int, str],
        reason: str,
        year: Optional[int] = None,
        adjusted_by: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        """HR change to ``allocated_days``. Subtraction floors at zero."""
        try:
            direction = AdjustmentDirection(direction)
        except ValueError:
            raise ValidationException(
                {"direction": ["Direction must be 'add' or 'subtract'."]}
            )
        amount = _to_amount(amount)
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["A reason is required."]})

        emp = await self.db.execute(
            select(Employee.id).where(
                Employee.id == employee_id, Employee.is_active.is_(True)
            )
        )
        if emp.scalar() is None:
            raise NotFoundException("Employee", str(employee_id))

        target_year = year or datetime.now(timezone.utc).year
        balance = await self.get_balance(employee_id, target_year, lock=True)
        if balance is None:
            balance = await self._create_balance(employee_id, target_year)

        before = Decimal(balance.allocated_days)
        if direction == AdjustmentDirection.add:
            after = before + amount
        else:
            after = max(ZERO, before - amount)
        balance.allocated_days = after

        self.db.add(LeaveBalanceAdjustment(
            employee_id=employee_id,
            leave_balance_id=balance.id,
            direction=direction,
            amount=amount,
            reason=reason.strip(),
            previous_allocated=before,
            new_allocated=after,
            adjusted_by=adjusted_by,
        ))
        await self.db.flush()

        await create_audit_entry(
            self.db,
            action="adjust",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=adjusted_by,
            old_values={"allocated_days": str(before)},
            new_values={
                "allocated_days": str(after),
                "direction": direction.value,
                "amount": str(amount),
                "reason": reason.strip(),
            },
        )
        await notify_balance_adjusted(
            self.db,
            employee_id=employee_id,
            balance_id=balance.id,
            direction=direction.value,
            amount=amount,
            reason=reason.strip(),
        )
        logger.info(
            "Adjusted allocation for employee %s year %s: %s -> %s",
            employee_id, target_year, before, after,
        )
        return {
            "allocated_before": before,
            "allocated_after": after,
            "balance": balance,
        }

    async def list_adjustments(
        self, employee_id: uuid.UUID, year: Optional[int] = None
    ) -> list[LeaveBalanceAdjustment]:
        query = (
            select(LeaveBalanceAdjustment)
            .join(LeaveBalance, LeaveBalance.id == LeaveBalanceAdjustment.leave_balance_id)
            .where(LeaveBalanceAdjustment.employee_id == employee_id)
        )
        if year is not None:
            query = query.where(LeaveBalance.year == year)
        result = await self.db.execute(
            query.order_by(
                LeaveBalanceAdjustment.created_at.desc(),
                LeaveBalanceAdjustment.id,
            )
        )
        return list(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Bulk recalculation
    # ─────────────────────────────────────────────────────────────────

    async def recalculate_all(
        self,
        employee_id: Optional[uuid.UUID] = None,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RecalculationResult:
        """Re-run the adjudicator over every approved application.

        Stored results that differ are overwritten and the difference is
        posted to an existing balance. Missing balances are left alone.
        """
        query = select(LeaveApplication).where(
            LeaveApplication.status == LeaveStatus.approved
        )
        if employee_id is not None:
            query = query.where(LeaveApplication.employee_id == employee_id)
        result = await self.db.execute(
            query.order_by(LeaveApplication.applied_at, LeaveApplication.id)
        )
        applications = list(result.scalars().all())

        applications_updated = 0
        balances_updated = 0
        for application in applications:
            # Same lock order as a status change, then re-read the row
            await self._lock_balances(application)
            application = await self._load_application(application.id)
            if application.status != LeaveStatus.approved:
                continue

            calc = await self._evaluate(application)
            old = _previous_deduction(application)
            if (
                old == calc.deducted_days
                and application.deducted_days is not None
                and (application.sandwich_reason or "") == calc.reason
                and bool(application.is_sandwich) == calc.is_sandwich
            ):
                continue

            self._store(application, calc)
            await self.db.flush()
            applications_updated += 1

            delta = calc.deducted_days - old
            if delta:
                balance = await self._post(
                    application.employee_id,
                    application.start_date.year,
                    delta,
                    application_id=application.id,
                    actor_id=actor_id,
                    create=False,
                )
                if balance is not None:
                    balances_updated += 1
            logger.info(
                "Recalculated leave %s: %s -> %s day(s)",
                application.id, old, calc.deducted_days,
            )

        logger.info(
            "Recalculation complete: %d application(s), %d balance(s) updated",
            applications_updated, balances_updated,
        )
        return RecalculationResult(
            applications_updated=applications_updated,
            balances_updated=balances_updated,
        )
