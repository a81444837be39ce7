"""Notification dispatch for leave workflow and ledger events.

Only persistence of the in-app message happens here; delivery (email, push)
is handled by whatever reads the ``notifications`` table.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import DATE_FORMAT, NotificationType
from backend.notifications.models import Notification


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification


# ── Leave dispatchers ───────────────────────────────────────────────
# They accept the ORM object directly to avoid tight schema coupling.


def _span(application) -> str:
    start = application.start_date.strftime(DATE_FORMAT)
    end = application.end_date.strftime(DATE_FORMAT)
    return start if start == end else f"{start} to {end}"


async def notify_leave_submitted(
    db: AsyncSession,
    application,  # backend.leave.models.LeaveApplication
    approver_id: uuid.UUID,
) -> Notification:
    """Notify the reporting manager that a new application needs review."""
    return await NotificationService.create_notification(
        db,
        recipient_id=approver_id,
        type=NotificationType.action_required,
        title="New Leave Application",
        message=(
            f"A leave application for {_span(application)} "
            f"({application.days_count} working day(s)) requires your approval."
        ),
        action_url=f"/leave/applications/{application.id}",
        entity_type="leave_application",
        entity_id=application.id,
    )


async def notify_leave_approved(
    db: AsyncSession,
    application,  # backend.leave.models.LeaveApplication
) -> Notification:
    """Tell the employee the application was approved and what it cost."""
    message = (
        f"Your leave for {_span(application)} has been approved. "
        f"{application.deducted_days} day(s) deducted from your balance."
    )
    if application.is_sandwich:
        message += f" {application.sandwich_reason}."
    return await NotificationService.create_notification(
        db,
        recipient_id=application.employee_id,
        type=NotificationType.approval,
        title="Leave Approved",
        message=message,
        action_url=f"/leave/applications/{application.id}",
        entity_type="leave_application",
        entity_id=application.id,
    )


async def notify_leave_closed(
    db: AsyncSession,
    application,  # backend.leave.models.LeaveApplication
    *,
    restored_days: Decimal,
    remarks: Optional[str] = None,
) -> Notification:
    """Tell the employee the application was rejected, withdrawn or cancelled."""
    status = application.status.value
    message = f"Your leave for {_span(application)} was {status}."
    if restored_days:
        message += f" {restored_days} day(s) returned to your balance."
    if remarks:
        message += f" Remarks: {remarks}"
    return await NotificationService.create_notification(
        db,
        recipient_id=application.employee_id,
        type=NotificationType.alert if status == "rejected" else NotificationType.info,
        title=f"Leave {status.capitalize()}",
        message=message,
        action_url=f"/leave/applications/{application.id}",
        entity_type="leave_application",
        entity_id=application.id,
    )


async def notify_sandwich_repriced(
    db: AsyncSession,
    application,  # backend.leave.models.LeaveApplication
    delta: Decimal,
) -> Notification:
    """Tell the employee a paired Friday/Monday application was re-priced."""
    verb = "added to" if delta > 0 else "returned to"
    return await NotificationService.create_notification(
        db,
        recipient_id=application.employee_id,
        type=NotificationType.info,
        title="Leave Deduction Updated",
        message=(
            f"Your approved leave on {_span(application)} now counts as "
            f"{application.deducted_days} day(s); {abs(delta)} day(s) "
            f"{verb} your balance."
        ),
        action_url=f"/leave/applications/{application.id}",
        entity_type="leave_application",
        entity_id=application.id,
    )


async def notify_balance_adjusted(
    db: AsyncSession,
    *,
    employee_id: uuid.UUID,
    balance_id: uuid.UUID,
    direction: str,
    amount: Decimal,
    reason: str,
) -> Notification:
    """Tell the employee HR changed their allocation."""
    verb = "credited" if direction == "add" else "debited"
    return await NotificationService.create_notification(
        db,
        recipient_id=employee_id,
        type=NotificationType.info,
        title="Leave Balance Adjusted",
        message=f"{amount} day(s) have been {verb}. Reason: {reason}",
        entity_type="leave_balance",
        entity_id=balance_id,
    )
