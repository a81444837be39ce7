"""Leave service layer — application workflow on top of the balance ledger.

Business logic:
  - Leave application with overlap, span and half-day validation
  - Approval / rejection / withdrawal / cancellation, each routed through
    ``LeaveLedger.apply_status_change`` so balances follow the status
  - Balance reads against the consolidated bucket
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import has_role
from backend.common.audit import create_audit_entry
from backend.common.constants import LeaveStatus, UserRole
from backend.common.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.leave.calendar import count_working_days, load_holidays
from backend.leave.ledger import LeaveLedger, StatusChangeResult
from backend.leave.models import LeaveApplication, LeaveBalance, LeaveType
from backend.leave.sandwich import HALF_DAY, preview
from backend.leave.schemas import (
    LeaveApplicationCreate,
    LeaveApplicationOut,
    LeaveBalanceOut,
    LeavePreviewOut,
    LeaveSubmissionOut,
)
from backend.notifications.service import (
    notify_leave_approved,
    notify_leave_closed,
    notify_leave_submitted,
)

# Statuses from which each terminal status may be reached.
_ALLOWED_FROM: dict[LeaveStatus, tuple[LeaveStatus, ...]] = {
    LeaveStatus.approved: (LeaveStatus.pending,),
    LeaveStatus.rejected: (LeaveStatus.pending,),
    LeaveStatus.withdrawn: (LeaveStatus.pending, LeaveStatus.approved),
    LeaveStatus.cancelled: (LeaveStatus.pending, LeaveStatus.approved),
}

_ACTIONS: dict[LeaveStatus, str] = {
    LeaveStatus.approved: "approve",
    LeaveStatus.rejected: "reject",
    LeaveStatus.withdrawn: "withdraw",
    LeaveStatus.cancelled: "cancel",
}


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: applications, reviews, balances."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        result = await db.execute(
            select(Employee).where(
                Employee.id == employee_id, Employee.is_active.is_(True)
            )
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def _get_application(
        db: AsyncSession, application_id: uuid.UUID
    ) -> LeaveApplication:
        result = await db.execute(
            select(LeaveApplication).where(LeaveApplication.id == application_id)
        )
        application = result.scalars().first()
        if application is None:
            raise NotFoundException("LeaveApplication", str(application_id))
        return application

    @staticmethod
    async def _transition(
        db: AsyncSession,
        application: LeaveApplication,
        new_status: LeaveStatus,
        actor_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> StatusChangeResult:
        """Move ``application`` to ``new_status`` and settle the ledger."""
        ledger = LeaveLedger(db)
        # Rejection only leaves pending, so it never touches a balance
        if new_status != LeaveStatus.rejected:
            application = await ledger.lock_for_change(
                application, create=new_status == LeaveStatus.approved,
            )

        old_status = application.status
        if old_status not in _ALLOWED_FROM[new_status]:
            raise InvalidTransitionException(old_status.value, new_status.value)

        application.status = new_status
        if new_status in (LeaveStatus.approved, LeaveStatus.rejected):
            application.reviewed_by = actor_id
            application.reviewed_at = datetime.now(timezone.utc)
            application.reviewer_remarks = remarks
        await db.flush()

        change = await ledger.apply_status_change(
            application.id, old_status, new_status, actor_id=actor_id,
        )

        await create_audit_entry(
            db,
            action=_ACTIONS[new_status],
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=actor_id,
            old_values={"status": old_status.value},
            new_values={
                "status": new_status.value,
                "remarks": remarks,
                "deducted_days": (
                    str(application.deducted_days)
                    if application.deducted_days is not None else None
                ),
            },
        )

        if new_status == LeaveStatus.approved:
            await notify_leave_approved(db, application)
        else:
            await notify_leave_closed(
                db, application, restored_days=-change.delta, remarks=remarks,
            )
        return change

    @staticmethod
    async def _check_reviewer(
        db: AsyncSession,
        application: LeaveApplication,
        reviewer_id: uuid.UUID,
        reviewer_role: UserRole,
    ) -> None:
        if application.employee_id == reviewer_id:
            raise ForbiddenException("You cannot review your own leave application.")
        owner = await LeaveService._get_employee(db, application.employee_id)
        is_manager = owner.reporting_manager_id == reviewer_id
        if not (is_manager or has_role(reviewer_role, UserRole.hr_admin)):
            raise ForbiddenException(
                "You are not authorized to review this leave application."
            )

    # ─────────────────────────────────────────────────────────────────
    # Apply
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveApplicationCreate,
    ) -> LeaveSubmissionOut:
        """Submit a pending application.

        The returned preview is the charge as things stand now; the
        binding figure is computed again at approval.
        """
        employee = await LeaveService._get_employee(db, employee_id)

        lt_result = await db.execute(
            select(LeaveType).where(
                LeaveType.id == data.leave_type_id,
                LeaveType.is_active.is_(True),
            )
        )
        if lt_result.scalars().first() is None:
            raise NotFoundException("LeaveType", str(data.leave_type_id))

        # ── Working days ────────────────────────────────────────────
        holidays = await load_holidays(db, data.start_date, data.end_date)
        working = count_working_days(data.start_date, data.end_date, holidays)
        if data.is_half_day:
            if working == 0:
                raise ValidationException(
                    {"start_date": ["Half-day leave must fall on a working day."]}
                )
            days_count = HALF_DAY
        else:
            days_count = Decimal(working)
        if days_count <= 0:
            raise ValidationException(
                {"dates": ["No leave days found in the selected range "
                           "(all days may be weekends or holidays)."]}
            )

        # ── Overlapping applications ────────────────────────────────
        overlap_result = await db.execute(
            select(func.count()).select_from(LeaveApplication).where(
                LeaveApplication.employee_id == employee_id,
                LeaveApplication.status.in_([
                    LeaveStatus.pending, LeaveStatus.approved,
                ]),
                LeaveApplication.start_date <= data.end_date,
                LeaveApplication.end_date >= data.start_date,
            )
        )
        if overlap_result.scalar_one() > 0:
            raise ValidationException(
                {"dates": ["You already have a pending or approved leave "
                           "overlapping these dates."]}
            )

        application = LeaveApplication(
            employee_id=employee_id,
            leave_type_id=data.leave_type_id,
            start_date=data.start_date,
            end_date=data.end_date,
            is_half_day=data.is_half_day,
            half_day_period=data.half_day_period if data.is_half_day else None,
            days_count=days_count,
            reason=data.reason,
            status=LeaveStatus.pending,
            applied_at=datetime.now(timezone.utc),
        )
        db.add(application)
        await db.flush()

        await create_audit_entry(
            db,
            action="submit",
            entity_type="leave_application",
            entity_id=application.id,
            actor_id=employee_id,
            new_values={
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "days_count": str(days_count),
            },
        )

        if employee.reporting_manager_id:
            await notify_leave_submitted(db, application, employee.reporting_manager_id)

        estimate = await preview(
            db, employee_id, data.start_date, data.end_date, data.is_half_day,
        )
        return LeaveSubmissionOut(
            application=LeaveApplicationOut.model_validate(application),
            preview=LeavePreviewOut.model_validate(estimate),
        )

    # ─────────────────────────────────────────────────────────────────
    # Review
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        application_id: uuid.UUID,
        approver_id: uuid.UUID,
        approver_role: UserRole = UserRole.manager,
        *,
        remarks: Optional[str] = None,
    ) -> LeaveApplicationOut:
        """Approve a pending application and charge the balance."""
        application = await LeaveService._get_application(db, application_id)
        await LeaveService._check_reviewer(db, application, approver_id, approver_role)
        await LeaveService._transition(
            db, application, LeaveStatus.approved, approver_id, remarks=remarks,
        )
        return LeaveApplicationOut.model_validate(application)

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        application_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
        approver_role: UserRole = UserRole.manager,
    ) -> LeaveApplicationOut:
        application = await LeaveService._get_application(db, application_id)
        await LeaveService._check_reviewer(db, application, approver_id, approver_role)
        await LeaveService._transition(
            db, application, LeaveStatus.rejected, approver_id, remarks=reason,
        )
        return LeaveApplicationOut.model_validate(application)

    @staticmethod
    async def withdraw_leave(
        db: AsyncSession,
        application_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> LeaveApplicationOut:
        """Owner pulls back a pending or approved application."""
        application = await LeaveService._get_application(db, application_id)
        if application.employee_id != employee_id:
            raise ForbiddenException("You can only withdraw your own leave applications.")
        await LeaveService._transition(
            db, application, LeaveStatus.withdrawn, employee_id,
        )
        return LeaveApplicationOut.model_validate(application)

    @staticmethod
    async def cancel_leave(
        db: AsyncSession,
        application_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
    ) -> LeaveApplicationOut:
        """HR cancels an application on the employee's behalf."""
        application = await LeaveService._get_application(db, application_id)
        await LeaveService._transition(
            db, application, LeaveStatus.cancelled, actor_id, remarks=reason,
        )
        return LeaveApplicationOut.model_validate(application)

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> LeaveBalanceOut:
        target_year = year or datetime.now(timezone.utc).year
        balance = await LeaveLedger(db).get_balance(employee_id, target_year)
        if balance is None:
            raise NotFoundException("LeaveBalance", f"{employee_id}/{target_year}")
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def list_balances(
        db: AsyncSession,
        pagination: PaginationParams,
        year: Optional[int] = None,
    ) -> PaginatedResponse:
        """All employees' balances for a year, for HR."""
        target_year = year or datetime.now(timezone.utc).year
        bucket_id = await LeaveLedger(db).bucket_id()
        query = (
            select(LeaveBalance)
            .where(
                LeaveBalance.leave_type_id == bucket_id,
                LeaveBalance.year == target_year,
            )
            .order_by(LeaveBalance.employee_id)
        )
        return await paginate(
            db, query, pagination, transform=LeaveBalanceOut.model_validate,
        )
