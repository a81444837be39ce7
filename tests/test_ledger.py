"""Balance ledger tests — status transitions, pair resolution, manual
adjustments and bulk recalculation.

Applications are inserted directly and moved with the same two steps the
workflow uses: set the status, then hand the change to the ledger.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import AuditTrail
from backend.common.constants import AdjustmentDirection, LeaveStatus
from backend.common.exceptions import NotFoundException, ValidationException
from backend.leave import ledger as ledger_module
from backend.leave.ledger import LeaveLedger, StatusChangeResult
from backend.leave.models import LeaveApplication, LeaveBalance, LeaveBalanceAdjustment
from backend.leave.service import LeaveService
from backend.notifications.models import Notification
from tests.conftest import (
    seed_application,
    seed_balance,
    seed_employee,
    seed_leave_type,
)

FRI = date(2025, 3, 7)
MON = date(2025, 3, 10)
WED = date(2025, 3, 12)


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _move(
    db: AsyncSession, application: LeaveApplication, new_status: LeaveStatus
) -> StatusChangeResult:
    old_status = application.status
    application.status = new_status
    await db.flush()
    return await LeaveLedger(db).apply_status_change(
        application.id, old_status, new_status,
    )


async def _used(db: AsyncSession, employee_id: uuid.UUID, year: int = 2025) -> Decimal:
    result = await db.execute(
        select(LeaveBalance.used_days).where(
            LeaveBalance.employee_id == employee_id, LeaveBalance.year == year,
        )
    )
    return Decimal(result.scalar_one())


async def _approved_total(db: AsyncSession, employee_id: uuid.UUID) -> Decimal:
    result = await db.execute(
        select(LeaveApplication.deducted_days).where(
            LeaveApplication.employee_id == employee_id,
            LeaveApplication.status == LeaveStatus.approved,
        )
    )
    return sum((Decimal(d) for d in result.scalars().all()), Decimal(0))


# ═════════════════════════════════════════════════════════════════════
# 1. Status transitions
# ═════════════════════════════════════════════════════════════════════


class TestApprovalCharges:

    async def test_friday_to_monday_charges_four(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, FRI, MON)

        change = await _move(db, app, LeaveStatus.approved)

        assert change.delta == Decimal(4)
        assert app.deducted_days == Decimal(4)
        assert app.is_sandwich is True
        assert "Continuous Friday to Monday" in app.sandwich_reason
        assert await _used(db, test_employee.id) == Decimal(4)

    async def test_single_friday_charges_one(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, FRI)

        await _move(db, app, LeaveStatus.approved)

        assert app.deducted_days == Decimal(1)
        assert app.is_sandwich is False
        assert await _used(db, test_employee.id) == Decimal(1)

    async def test_balance_created_when_missing(self, db, test_employee, leave_bucket, caplog):
        caplog.set_level(logging.WARNING, logger="backend.leave.ledger")
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        await _move(db, app, LeaveStatus.approved)

        balance = await LeaveLedger(db).get_balance(test_employee.id, 2025)
        assert balance is not None
        assert balance.allocated_days == Decimal(0)
        assert balance.used_days == Decimal(1)
        assert "no allocation" in caplog.text

    async def test_debt_is_a_warning(self, db, test_employee, leave_bucket, caplog):
        caplog.set_level(logging.WARNING, logger="backend.leave.ledger")
        await seed_balance(db, test_employee.id, leave_bucket.id, allocated=Decimal(2))
        app = await seed_application(db, test_employee.id, leave_bucket.id, FRI, MON)

        await _move(db, app, LeaveStatus.approved)

        balance = await LeaveLedger(db).get_balance(test_employee.id, 2025)
        assert balance.remaining_days == Decimal(-2)
        assert "exceeded" in caplog.text

    async def test_balance_year_follows_start_date(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, year=2025)
        await seed_balance(db, test_employee.id, leave_bucket.id, year=2026)
        app = await seed_application(
            db, test_employee.id, leave_bucket.id, date(2025, 12, 31), date(2026, 1, 1),
        )

        await _move(db, app, LeaveStatus.approved)

        assert await _used(db, test_employee.id, 2025) == Decimal(2)
        assert await _used(db, test_employee.id, 2026) == Decimal(0)

    async def test_charges_consolidated_bucket(self, db, test_employee, leave_bucket):
        casual = await seed_leave_type(db, code="CL", name="Casual Leave")
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, casual.id, WED)

        await _move(db, app, LeaveStatus.approved)

        assert await _used(db, test_employee.id) == Decimal(1)

    async def test_ledger_writes_audit_entries(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        await _move(db, app, LeaveStatus.approved)

        result = await db.execute(
            select(AuditTrail).where(AuditTrail.action == "ledger_debit")
        )
        entry = result.scalars().one()
        assert entry.new_values["delta"] == "1"
        assert entry.new_values["leave_application_id"] == str(app.id)


class TestReleaseAndNoOps:

    async def test_withdraw_restores_stored_deduction(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, FRI, MON)
        await _move(db, app, LeaveStatus.approved)

        change = await _move(db, app, LeaveStatus.withdrawn)

        assert change.delta == Decimal(-4)
        assert app.deducted_days is None
        assert app.is_sandwich is False
        assert app.sandwich_reason is None
        assert await _used(db, test_employee.id) == Decimal(0)

    async def test_round_trip(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, FRI, MON)

        await _move(db, app, LeaveStatus.approved)
        first = (app.deducted_days, await _used(db, test_employee.id))
        await _move(db, app, LeaveStatus.cancelled)
        await _move(db, app, LeaveStatus.approved)

        assert (app.deducted_days, await _used(db, test_employee.id)) == first

    async def test_non_approved_moves_touch_nothing(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, MON)

        change = await _move(db, app, LeaveStatus.rejected)

        assert change == StatusChangeResult()
        assert app.deducted_days is None
        assert await _used(db, test_employee.id) == Decimal(0)

    async def test_same_status_is_noop(self, db, test_employee, leave_bucket):
        app = await seed_application(
            db, test_employee.id, leave_bucket.id, WED, status=LeaveStatus.approved,
        )
        change = await LeaveLedger(db).apply_status_change(
            app.id, LeaveStatus.approved, LeaveStatus.approved,
        )
        assert change.delta == Decimal(0)

    async def test_used_days_clamped_at_zero(self, db, test_employee, leave_bucket, caplog):
        caplog.set_level(logging.WARNING, logger="backend.leave.ledger")
        await seed_balance(db, test_employee.id, leave_bucket.id, used=Decimal(1))
        app = await seed_application(
            db, test_employee.id, leave_bucket.id, FRI, MON, status=LeaveStatus.approved,
        )
        app.deducted_days = Decimal(4)
        await db.flush()

        await _move(db, app, LeaveStatus.withdrawn)

        assert await _used(db, test_employee.id) == Decimal(0)
        assert "clamping" in caplog.text

    async def test_status_mismatch_rejected(self, db, test_employee, leave_bucket):
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)
        with pytest.raises(ValidationException):
            await LeaveLedger(db).apply_status_change(
                app.id, LeaveStatus.pending, LeaveStatus.approved,
            )

    async def test_unknown_application(self, db, leave_bucket):
        with pytest.raises(NotFoundException):
            await LeaveLedger(db).apply_status_change(
                uuid.uuid4(), LeaveStatus.pending, LeaveStatus.approved,
            )


# ═════════════════════════════════════════════════════════════════════
# 2. Friday / Monday pairs
# ═════════════════════════════════════════════════════════════════════


class TestPairResolution:

    async def _pair(self, db, employee_id, bucket_id):
        fri = await seed_application(db, employee_id, bucket_id, FRI)
        mon = await seed_application(db, employee_id, bucket_id, MON)
        return fri, mon

    async def test_second_approval_reprices_first(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)

        await _move(db, fri, LeaveStatus.approved)
        assert fri.deducted_days == Decimal(1)

        change = await _move(db, mon, LeaveStatus.approved)

        assert mon.deducted_days == Decimal(2)
        assert fri.deducted_days == Decimal(2)
        assert fri.is_sandwich is True
        assert change.sibling_id == fri.id
        assert change.sibling_delta == Decimal(1)
        assert await _used(db, test_employee.id) == Decimal(4)

    async def test_order_independent(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)

        await _move(db, mon, LeaveStatus.approved)
        await _move(db, fri, LeaveStatus.approved)

        assert (fri.deducted_days, mon.deducted_days) == (Decimal(2), Decimal(2))
        assert await _used(db, test_employee.id) == Decimal(4)

    async def test_sibling_notified_of_reprice(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)
        await _move(db, fri, LeaveStatus.approved)
        await _move(db, mon, LeaveStatus.approved)

        result = await db.execute(
            select(Notification).where(Notification.entity_id == fri.id)
        )
        note = result.scalars().one()
        assert note.recipient_id == test_employee.id
        assert note.title == "Leave Deduction Updated"

    async def test_withdrawing_one_side_releases_pair(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)
        await _move(db, fri, LeaveStatus.approved)
        await _move(db, mon, LeaveStatus.approved)

        change = await _move(db, mon, LeaveStatus.withdrawn)

        assert change.delta == Decimal(-2)
        assert change.sibling_delta == Decimal(-1)
        assert fri.deducted_days == Decimal(1)
        assert fri.is_sandwich is False
        assert await _used(db, test_employee.id) == Decimal(1)

    async def test_pair_round_trip(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)
        await _move(db, fri, LeaveStatus.approved)
        await _move(db, mon, LeaveStatus.approved)

        await _move(db, mon, LeaveStatus.withdrawn)
        await _move(db, mon, LeaveStatus.approved)

        assert (fri.deducted_days, mon.deducted_days) == (Decimal(2), Decimal(2))
        assert await _used(db, test_employee.id) == Decimal(4)

    async def test_conservation(self, db, test_employee, leave_bucket):
        """used_days always equals the sum of approved deductions."""
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri, mon = await self._pair(db, test_employee.id, leave_bucket.id)
        span = await seed_application(
            db, test_employee.id, leave_bucket.id, date(2025, 3, 14), date(2025, 3, 17),
        )
        wed = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        steps = [
            (fri, LeaveStatus.approved),
            (span, LeaveStatus.approved),
            (mon, LeaveStatus.approved),
            (wed, LeaveStatus.approved),
            (fri, LeaveStatus.cancelled),
            (span, LeaveStatus.withdrawn),
        ]
        for app, status in steps:
            await _move(db, app, status)
            assert await _used(db, test_employee.id) == await _approved_total(
                db, test_employee.id
            )


# ═════════════════════════════════════════════════════════════════════
# 3. Consolidated bucket resolution
# ═════════════════════════════════════════════════════════════════════


class TestBucket:

    async def test_configured_code(self, db, leave_bucket):
        await seed_leave_type(db, code="CL", name="Casual Leave")
        assert await LeaveLedger(db).bucket_id() == leave_bucket.id

    async def test_falls_back_to_name(self, db):
        now = datetime.now(timezone.utc)
        await seed_leave_type(db, code="CL", name="Casual Leave", created_at=now - timedelta(days=1))
        annual = await seed_leave_type(db, code="AL", name="Annual Leave", created_at=now)
        assert await LeaveLedger(db).bucket_id() == annual.id

    async def test_falls_back_to_oldest(self, db):
        now = datetime.now(timezone.utc)
        oldest = await seed_leave_type(db, code="CL", name="Casual Leave", created_at=now - timedelta(days=2))
        await seed_leave_type(db, code="SL", name="Sick Leave", created_at=now)
        assert await LeaveLedger(db).bucket_id() == oldest.id

    async def test_no_leave_types(self, db):
        with pytest.raises(NotFoundException):
            await LeaveLedger(db).bucket_id()


# ═════════════════════════════════════════════════════════════════════
# 4. Manual adjustment
# ═════════════════════════════════════════════════════════════════════


class TestAdjustBalance:

    async def test_add(self, db, test_employee, hr_admin, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, allocated=Decimal(10))

        result = await LeaveLedger(db).adjust_balance(
            test_employee.id, "add", Decimal("2.5"), "Carry forward", year=2025,
            adjusted_by=hr_admin.id,
        )

        assert result["allocated_before"] == Decimal(10)
        assert result["allocated_after"] == Decimal("12.5")
        assert result["balance"].allocated_days == Decimal("12.5")

        log = (await db.execute(select(LeaveBalanceAdjustment))).scalars().one()
        assert log.direction == AdjustmentDirection.add
        assert log.previous_allocated == Decimal(10)
        assert log.new_allocated == Decimal("12.5")
        assert log.adjusted_by == hr_admin.id

    async def test_subtract_floors_at_zero(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, allocated=Decimal(3))

        result = await LeaveLedger(db).adjust_balance(
            test_employee.id, AdjustmentDirection.subtract, 5, "Correction", year=2025,
        )

        assert result["allocated_after"] == Decimal(0)

    async def test_creates_missing_balance(self, db, test_employee, leave_bucket):
        result = await LeaveLedger(db).adjust_balance(
            test_employee.id, "add", 18, "Annual allocation", year=2025,
        )
        assert result["allocated_before"] == Decimal(0)
        assert result["balance"].used_days == Decimal(0)

    async def test_used_days_untouched(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, used=Decimal(4))
        result = await LeaveLedger(db).adjust_balance(
            test_employee.id, "add", 1, "Bonus", year=2025,
        )
        assert result["balance"].used_days == Decimal(4)

    @pytest.mark.parametrize("amount", [0, -1, "abc"])
    async def test_bad_amount(self, db, test_employee, leave_bucket, amount):
        with pytest.raises(ValidationException):
            await LeaveLedger(db).adjust_balance(test_employee.id, "add", amount, "x")

    async def test_bad_direction(self, db, test_employee, leave_bucket):
        with pytest.raises(ValidationException):
            await LeaveLedger(db).adjust_balance(test_employee.id, "multiply", 1, "x")

    async def test_unknown_employee(self, db, leave_bucket):
        with pytest.raises(NotFoundException):
            await LeaveLedger(db).adjust_balance(uuid.uuid4(), "add", 1, "x")

    async def test_inactive_employee(self, db, leave_bucket):
        emp = await seed_employee(db)
        emp.is_active = False
        await db.flush()
        with pytest.raises(NotFoundException):
            await LeaveLedger(db).adjust_balance(emp.id, "add", 1, "x")

    async def test_employee_notified(self, db, test_employee, leave_bucket):
        await LeaveLedger(db).adjust_balance(test_employee.id, "add", 2, "Bonus", year=2025)
        note = (await db.execute(select(Notification))).scalars().one()
        assert note.recipient_id == test_employee.id
        assert note.entity_type == "leave_balance"

    async def test_list_adjustments_by_year(self, db, test_employee, leave_bucket):
        ledger = LeaveLedger(db)
        await ledger.adjust_balance(test_employee.id, "add", 10, "Initial", year=2025)
        await ledger.adjust_balance(test_employee.id, "subtract", 1, "Fix", year=2025)
        await ledger.adjust_balance(test_employee.id, "add", 12, "Next year", year=2026)

        rows = await ledger.list_adjustments(test_employee.id, 2025)
        assert len(rows) == 2
        assert {r.reason for r in rows} == {"Initial", "Fix"}
        assert len(await ledger.list_adjustments(test_employee.id)) == 3


# ═════════════════════════════════════════════════════════════════════
# 5. Bulk recalculation
# ═════════════════════════════════════════════════════════════════════


class TestRecalculateAll:

    async def test_fixes_stale_deductions(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, used=Decimal(2))
        app = await seed_application(
            db, test_employee.id, leave_bucket.id, FRI, MON,
            status=LeaveStatus.approved, days_count=Decimal(2),
        )

        result = await LeaveLedger(db).recalculate_all()

        assert result.applications_updated == 1
        assert result.balances_updated == 1
        assert app.deducted_days == Decimal(4)
        assert await _used(db, test_employee.id) == Decimal(4)

    async def test_idempotent(self, db, test_employee, leave_bucket):
        await seed_balance(db, test_employee.id, leave_bucket.id, used=Decimal(3))
        for day in (FRI, MON):
            await seed_application(
                db, test_employee.id, leave_bucket.id, day,
                status=LeaveStatus.approved, days_count=Decimal(1),
            )
        await seed_application(
            db, test_employee.id, leave_bucket.id, WED,
            status=LeaveStatus.approved, days_count=Decimal(1),
        )

        ledger = LeaveLedger(db)
        first = await ledger.recalculate_all()
        second = await ledger.recalculate_all()

        assert first.applications_updated == 3
        assert second.applications_updated == 0
        assert second.balances_updated == 0
        assert await _used(db, test_employee.id) == Decimal(5)

    async def test_missing_balance_not_created(self, db, test_employee, leave_bucket):
        await seed_application(
            db, test_employee.id, leave_bucket.id, FRI, MON,
            status=LeaveStatus.approved, days_count=Decimal(2),
        )

        result = await LeaveLedger(db).recalculate_all()

        assert result.applications_updated == 1
        assert result.balances_updated == 0
        count = await db.execute(select(func.count()).select_from(LeaveBalance))
        assert count.scalar_one() == 0

    async def test_scoped_to_employee(self, db, test_employee, manager, leave_bucket):
        for emp in (test_employee, manager):
            await seed_application(
                db, emp.id, leave_bucket.id, FRI, MON,
                status=LeaveStatus.approved, days_count=Decimal(2),
            )

        result = await LeaveLedger(db).recalculate_all(test_employee.id)

        assert result.applications_updated == 1

    async def test_skips_non_approved(self, db, test_employee, leave_bucket):
        await seed_application(db, test_employee.id, leave_bucket.id, FRI, MON)
        result = await LeaveLedger(db).recalculate_all()
        assert result.applications_updated == 0


# ═════════════════════════════════════════════════════════════════════
# 6. Row locking order
# ═════════════════════════════════════════════════════════════════════


class TestLockOrder:
    """Balance rows are locked before pricing, in year order, and the
    re-priced sibling is selected FOR UPDATE."""

    @pytest.fixture
    def calls(self, monkeypatch):
        recorded: list[tuple] = []
        real_get_balance = LeaveLedger.get_balance
        real_adjudicate = ledger_module.adjudicate
        real_find_sibling = ledger_module.find_sibling

        async def get_balance(self, employee_id, year, *, lock=False):
            if lock:
                recorded.append(("lock", year))
            return await real_get_balance(self, employee_id, year, lock=lock)

        async def adjudicate(db, employee_id, start, *args, **kwargs):
            recorded.append(("price", start))
            return await real_adjudicate(db, employee_id, start, *args, **kwargs)

        async def find_sibling(*args, **kwargs):
            recorded.append(("sibling", kwargs.get("lock", False)))
            return await real_find_sibling(*args, **kwargs)

        monkeypatch.setattr(LeaveLedger, "get_balance", get_balance)
        monkeypatch.setattr(ledger_module, "adjudicate", adjudicate)
        monkeypatch.setattr(ledger_module, "find_sibling", find_sibling)
        return recorded

    async def test_balance_locked_before_pricing(self, db, test_employee, leave_bucket, calls):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        await _move(db, app, LeaveStatus.approved)

        assert calls.index(("lock", 2025)) < calls.index(("price", WED))

    async def test_missing_balance_created_before_pricing(self, db, test_employee, leave_bucket, calls):
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        await _move(db, app, LeaveStatus.approved)

        first_price = calls.index(("price", WED))
        assert ("lock", 2025) in calls[:first_price]
        assert await _used(db, test_employee.id) == Decimal(1)

    async def test_new_year_pair_locks_years_in_order(self, db, test_employee, leave_bucket, calls):
        # 2027-12-31 is a Friday, 2028-01-03 the following Monday
        fri_day, mon_day = date(2027, 12, 31), date(2028, 1, 3)
        for year in (2027, 2028):
            await seed_balance(db, test_employee.id, leave_bucket.id, year=year)
        fri = await seed_application(db, test_employee.id, leave_bucket.id, fri_day)
        mon = await seed_application(db, test_employee.id, leave_bucket.id, mon_day)
        await _move(db, fri, LeaveStatus.approved)
        calls.clear()

        await _move(db, mon, LeaveStatus.approved)

        locks = [c for c in calls if c[0] == "lock"]
        assert locks[:2] == [("lock", 2027), ("lock", 2028)]
        assert calls.index(("lock", 2028)) < calls.index(("price", mon_day))
        assert fri.deducted_days == Decimal(2)
        assert await _used(db, test_employee.id, 2027) == Decimal(2)
        assert await _used(db, test_employee.id, 2028) == Decimal(2)

    async def test_sibling_selected_for_update(self, db, test_employee, leave_bucket, calls):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        fri = await seed_application(db, test_employee.id, leave_bucket.id, FRI)
        mon = await seed_application(db, test_employee.id, leave_bucket.id, MON)
        await _move(db, fri, LeaveStatus.approved)

        await _move(db, mon, LeaveStatus.approved)

        assert ("sibling", True) in calls

    async def test_recalculation_locks_before_pricing(self, db, test_employee, leave_bucket, calls):
        await seed_balance(db, test_employee.id, leave_bucket.id, used=Decimal(2))
        await seed_application(
            db, test_employee.id, leave_bucket.id, FRI, MON,
            status=LeaveStatus.approved, days_count=Decimal(2),
        )

        await LeaveLedger(db).recalculate_all()

        assert calls.index(("lock", 2025)) < calls.index(("price", FRI))

    async def test_workflow_locks_before_writing_status(
        self, db, monkeypatch, test_employee, manager, leave_bucket, calls,
    ):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)
        real_lock = LeaveLedger.lock_for_change

        async def lock_for_change(self, application, *, create=False):
            locked = await real_lock(self, application, create=create)
            calls.append(("status", locked.status))
            return locked

        monkeypatch.setattr(LeaveLedger, "lock_for_change", lock_for_change)

        await LeaveService.approve_leave(db, app.id, manager.id)

        assert calls.index(("lock", 2025)) < calls.index(("status", LeaveStatus.pending))
        assert app.status == LeaveStatus.approved
        assert await _used(db, test_employee.id) == Decimal(1)

    async def test_rejection_takes_no_balance_lock(
        self, db, test_employee, manager, leave_bucket, calls,
    ):
        await seed_balance(db, test_employee.id, leave_bucket.id)
        app = await seed_application(db, test_employee.id, leave_bucket.id, WED)

        await LeaveService.reject_leave(db, app.id, manager.id, "Short staffed")

        assert not [c for c in calls if c[0] == "lock"]
