"""Leave router — preview, apply, review transitions, balances, recalculation.

All endpoints require authentication. HR-specific endpoints enforce
permissions from ``backend.common.constants.PERMISSIONS``.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import (
    current_role,
    get_current_user,
    has_role,
    require_permission,
    require_role,
)
from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.common.rate_limit import limiter
from backend.config import settings
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.leave.ledger import LeaveLedger
from backend.leave.sandwich import preview
from backend.leave.schemas import (
    BalanceAdjustmentOut,
    BalanceAdjustOut,
    BalanceAdjustRequest,
    LeaveApplicationCreate,
    LeaveApplicationOut,
    LeaveBalanceOut,
    LeavePreviewOut,
    LeavePreviewRequest,
    LeaveReasonRequest,
    LeaveReviewRequest,
    LeaveSubmissionOut,
    RecalculateOut,
    RecalculateRequest,
)
from backend.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


def _ensure_self_or_hr(request: Request, employee: Employee, employee_id: uuid.UUID) -> None:
    if employee.id != employee_id and not has_role(
        current_role(request), UserRole.hr_admin
    ):
        raise ForbiddenException("You can only view your own leave balance.")


# ── POST /preview ───────────────────────────────────────────────────

@router.post("/preview", response_model=LeavePreviewOut)
async def preview_leave(
    request: Request,
    body: LeavePreviewRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Price a date range without submitting it."""
    target = body.employee_id or employee.id
    _ensure_self_or_hr(request, employee, target)
    result = await preview(
        db, target, body.start_date, body.end_date, body.is_half_day,
    )
    return LeavePreviewOut.model_validate(result)


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", response_model=LeaveSubmissionOut, status_code=201)
async def apply_leave(
    body: LeaveApplicationCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates overlap and half-day rules."""
    return await LeaveService.apply_leave(db, employee.id, body)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{application_id}/approve", response_model=LeaveApplicationOut)
async def approve_leave(
    request: Request,
    application_id: uuid.UUID,
    body: LeaveReviewRequest,
    employee: Employee = Depends(
        require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending application. Charges the balance."""
    return await LeaveService.approve_leave(
        db, application_id, employee.id, current_role(request), remarks=body.remarks,
    )


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{application_id}/reject", response_model=LeaveApplicationOut)
async def reject_leave(
    request: Request,
    application_id: uuid.UUID,
    body: LeaveReasonRequest,
    employee: Employee = Depends(
        require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending application."""
    return await LeaveService.reject_leave(
        db, application_id, employee.id, body.reason, current_role(request),
    )


# ── PUT /{id}/withdraw ──────────────────────────────────────────────

@router.put("/{application_id}/withdraw", response_model=LeaveApplicationOut)
async def withdraw_leave(
    application_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw your own pending or approved application."""
    return await LeaveService.withdraw_leave(db, application_id, employee.id)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{application_id}/cancel", response_model=LeaveApplicationOut)
async def cancel_leave(
    application_id: uuid.UUID,
    body: LeaveReasonRequest,
    employee: Employee = Depends(require_permission("leave:cancel")),
    db: AsyncSession = Depends(get_db),
):
    """HR cancellation of a pending or approved application."""
    return await LeaveService.cancel_leave(db, application_id, employee.id, body.reason)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=PaginatedResponse[LeaveBalanceOut])
async def list_balances(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(require_permission("leave:read_all")),
    db: AsyncSession = Depends(get_db),
):
    """Every employee's balance for a year."""
    return await LeaveService.list_balances(db, pagination, year)


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=LeaveBalanceOut)
async def get_balance(
    request: Request,
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Allocated, used and remaining days for one employee."""
    _ensure_self_or_hr(request, employee, employee_id)
    return await LeaveService.get_balance(db, employee_id, year)


# ── POST /balances/{employee_id}/adjust ─────────────────────────────

@router.post("/balances/{employee_id}/adjust", response_model=BalanceAdjustOut)
async def adjust_balance(
    employee_id: uuid.UUID,
    body: BalanceAdjustRequest,
    employee: Employee = Depends(require_permission("leave:adjust_balance")),
    db: AsyncSession = Depends(get_db),
):
    """HR manual change to an employee's allocation."""
    result = await LeaveLedger(db).adjust_balance(
        employee_id,
        body.direction,
        body.amount,
        body.reason,
        year=body.year,
        adjusted_by=employee.id,
    )
    return BalanceAdjustOut(
        allocated_before=result["allocated_before"],
        allocated_after=result["allocated_after"],
        balance=LeaveBalanceOut.model_validate(result["balance"]),
    )


# ── GET /balances/{employee_id}/adjustments ─────────────────────────

@router.get(
    "/balances/{employee_id}/adjustments",
    response_model=list[BalanceAdjustmentOut],
)
async def list_adjustments(
    request: Request,
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Manual adjustment history, newest first."""
    _ensure_self_or_hr(request, employee, employee_id)
    rows = await LeaveLedger(db).list_adjustments(employee_id, year)
    return [BalanceAdjustmentOut.model_validate(r) for r in rows]


# ── POST /recalculate ───────────────────────────────────────────────

@router.post("/recalculate", response_model=RecalculateOut)
@limiter.limit(settings.RECALCULATE_RATE_LIMIT)
async def recalculate(
    request: Request,
    body: Optional[RecalculateRequest] = None,
    employee: Employee = Depends(require_permission("leave:recalculate")),
    db: AsyncSession = Depends(get_db),
):
    """Re-run sandwich pricing over all approved applications."""
    result = await LeaveLedger(db).recalculate_all(
        body.employee_id if body else None, actor_id=employee.id,
    )
    return RecalculateOut.model_validate(result)
