"""Enums and constants for the leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    withdrawn = "withdrawn"
    cancelled = "cancelled"


class HalfDayPeriod(str, enum.Enum):
    first_half = "first_half"
    second_half = "second_half"


class AdjustmentDirection(str, enum.Enum):
    add = "add"
    subtract = "subtract"


class SandwichRule(str, enum.Enum):
    """Identifier of the decision-table row that priced an application."""

    continuous_fri_mon = "continuous_fri_mon"
    friday_weekend = "friday_weekend"
    weekend_monday = "weekend_monday"
    paired_fri_mon = "paired_fri_mon"
    single_fri_mon_approved = "single_fri_mon_approved"
    single_fri_mon_unapproved = "single_fri_mon_unapproved"
    regular = "regular"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Role-based permissions ──────────────────────────────────────────

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.employee: [
        "leave:request",
        "leave:read_own",
        "leave:withdraw_own",
    ],
    UserRole.manager: [
        "leave:request",
        "leave:read_own",
        "leave:withdraw_own",
        "leave:read_team",
        "leave:approve",
        "leave:reject",
    ],
    UserRole.hr_admin: [
        "leave:read_all",
        "leave:approve",
        "leave:reject",
        "leave:cancel",
        "leave:adjust_balance",
        "leave:recalculate",
    ],
    UserRole.system_admin: [
        "leave:read_all",
        "leave:approve",
        "leave:reject",
        "leave:cancel",
        "leave:adjust_balance",
        "leave:recalculate",
    ],
}

# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%d-%b-%Y"          # Indian format: 19-Feb-2026
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
MAX_LEAVE_SPAN_DAYS = 365
