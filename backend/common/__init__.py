"""Common module — shared utilities for the leave ledger service."""

from backend.common.audit import AuditTrail, create_audit_entry
from backend.common.constants import (
    DATE_FORMAT,
    DEFAULT_PAGE_SIZE,
    MAX_LEAVE_SPAN_DAYS,
    MAX_PAGE_SIZE,
    PERMISSIONS,
    AdjustmentDirection,
    HalfDayPeriod,
    LeaveStatus,
    NotificationType,
    SandwichRule,
    UserRole,
)
from backend.common.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AdjustmentDirection",
    "HalfDayPeriod",
    "LeaveStatus",
    "NotificationType",
    "SandwichRule",
    "UserRole",
    "PERMISSIONS",
    "DATE_FORMAT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MAX_LEAVE_SPAN_DAYS",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
