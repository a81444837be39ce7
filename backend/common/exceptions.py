"""Leave ledger exceptions and their RFC 7807 ``application/problem+json`` rendering.

Every business failure raised by the calendar, adjudicator, ledger or
workflow is an ``AppException``. Raising one inside a request aborts the
request transaction (``backend.database.get_db`` rolls back), so a status
change and the balance postings it caused always succeed or fail together.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://hr.cfai.in/errors/leave"
PROBLEM_JSON = "application/problem+json"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all leave ledger errors."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)

    def to_problem(self, instance: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": f"{BASE_ERROR_URI}/{self.error_type}",
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
            "instance": instance,
        }
        if self.errors:
            body["errors"] = self.errors
        return body


class NotFoundException(AppException):
    """Unknown employee, application, leave type or balance row."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """Caller may not review, withdraw, view or adjust this record."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """Business-rule failure, raised before anything is written."""

    def __init__(
        self,
        errors: dict[str, list[str]],
        detail: str = "One or more fields failed validation.",
    ) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=detail,
            errors=errors,
        )


class InvalidTransitionException(ValidationException):
    """A leave application cannot move from its current status to the target."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            {"status": [f"Leave application is {current}; it cannot become {target}."]},
            detail=f"Invalid status transition {current} -> {target}.",
        )
        self.error_type = "invalid-transition"


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    logger.info(
        "%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(str(request.url.path)),
        media_type=PROBLEM_JSON,
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        # Drop the leading "body"/"query"/"path" segment
        loc = [str(p) for p in err.get("loc", ())][1:] or ["request"]
        field_errors.setdefault(".".join(loc), []).append(
            err.get("msg", "Invalid value")
        )

    problem = ValidationException(field_errors, detail="Request validation failed.")
    return JSONResponse(
        status_code=422,
        content=problem.to_problem(str(request.url.path)),
        media_type=PROBLEM_JSON,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the problem+json handlers (called from ``create_app``)."""
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
