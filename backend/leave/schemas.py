"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import (
    MAX_LEAVE_SPAN_DAYS,
    AdjustmentDirection,
    HalfDayPeriod,
    LeaveStatus,
    SandwichRule,
)


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    display_name: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Sandwich calculation / preview
# ═════════════════════════════════════════════════════════════════════


class SandwichCalculationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actual_days: Decimal
    deducted_days: Decimal
    is_sandwich: bool
    reason: str
    rule: SandwichRule


class LeavePreviewRequest(BaseModel):
    """Dates to price before submitting an application."""

    start_date: date
    end_date: date
    is_half_day: bool = False
    employee_id: Optional[uuid.UUID] = Field(
        None, description="Defaults to the caller; HR may preview for anyone."
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "LeavePreviewRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


class LeavePreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    calculation: SandwichCalculationOut
    total_days: int
    working_days: int
    weekend_days: int
    holiday_days: int
    sandwich_days: Decimal
    has_separate_applications: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Application: Create
# ═════════════════════════════════════════════════════════════════════


class LeaveApplicationCreate(BaseModel):
    """Payload for applying for leave."""

    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    is_half_day: bool = False
    half_day_period: Optional[HalfDayPeriod] = None
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveApplicationCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        if (self.end_date - self.start_date).days > MAX_LEAVE_SPAN_DAYS:
            raise ValueError(
                f"Leave cannot span more than {MAX_LEAVE_SPAN_DAYS} days."
            )
        if self.is_half_day and self.start_date != self.end_date:
            raise ValueError("Half-day leave must be a single day.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Application: Response
# ═════════════════════════════════════════════════════════════════════


class LeaveApplicationOut(BaseModel):
    """Full leave application response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    is_half_day: bool
    half_day_period: Optional[HalfDayPeriod] = None
    days_count: Decimal
    reason: Optional[str] = None
    applied_at: datetime
    status: LeaveStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    reviewer_remarks: Optional[str] = None
    deducted_days: Optional[Decimal] = None
    is_sandwich: bool = False
    sandwich_reason: Optional[str] = None


class LeaveSubmissionOut(BaseModel):
    """New application plus what it would cost if approved as things stand."""

    application: LeaveApplicationOut
    preview: LeavePreviewOut


# ═════════════════════════════════════════════════════════════════════
# Leave Approve / Reject / Withdraw / Cancel
# ═════════════════════════════════════════════════════════════════════


class LeaveReviewRequest(BaseModel):
    """Payload for approving a leave application."""

    remarks: Optional[str] = Field(None, max_length=500)


class LeaveReasonRequest(BaseModel):
    """Payload for rejecting or cancelling a leave application."""

    reason: str = Field(..., min_length=3, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    allocated_days: Decimal
    used_days: Decimal
    remaining_days: Decimal


class BalanceAdjustRequest(BaseModel):
    direction: AdjustmentDirection
    amount: Decimal = Field(..., gt=0, max_digits=5, decimal_places=1)
    reason: str = Field(..., min_length=3, max_length=500)
    year: Optional[int] = Field(None, ge=2000, le=2100)


class BalanceAdjustOut(BaseModel):
    allocated_before: Decimal
    allocated_after: Decimal
    balance: LeaveBalanceOut


class BalanceAdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_balance_id: uuid.UUID
    direction: AdjustmentDirection
    amount: Decimal
    reason: str
    previous_allocated: Decimal
    new_allocated: Decimal
    adjusted_by: Optional[uuid.UUID] = None
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Recalculation
# ═════════════════════════════════════════════════════════════════════


class RecalculateRequest(BaseModel):
    employee_id: Optional[uuid.UUID] = None


class RecalculateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    applications_updated: int
    balances_updated: int
