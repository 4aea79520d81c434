from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from seatledger.apps.api.response import error_response, is_versioned_request
from seatledger.core.errors import (
    CapacityExceededError,
    DatabaseError,
    ForbiddenError,
    NoActivePlanError,
    PlanChangeError,
    ReconciliationPartialFailure,
    SeatLedgerError,
    UnauthorizedError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    402: "CAPACITY_EXCEEDED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; the first isinstance match wins.
_DOMAIN_ERRORS: list[tuple[type[SeatLedgerError], int, str]] = [
    (NoActivePlanError, 404, "NO_ACTIVE_PLAN"),
    (CapacityExceededError, 402, "CAPACITY_EXCEEDED"),
    (UnauthorizedError, 401, "AUTH_UNAUTHORIZED"),
    (ForbiddenError, 403, "AUTH_FORBIDDEN"),
    (PlanChangeError, 422, "PLAN_CHANGE_INVALID"),
    (ReconciliationPartialFailure, 500, "RECONCILIATION_FAILED"),
    (DatabaseError, 503, "SERVICE_UNAVAILABLE"),
]


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | str | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        # An explicit "details" entry is passed through as-is.
        if set(details) == {"details"}:
            return code, message, details["details"]
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _domain_status(exc: SeatLedgerError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


def _domain_details(exc: SeatLedgerError) -> dict[str, Any] | None:
    if isinstance(exc, CapacityExceededError):
        return exc.to_detail()
    if isinstance(exc, NoActivePlanError):
        return {"organization_id": exc.organization_id}
    if isinstance(exc, ReconciliationPartialFailure):
        return {"failures": [{"org_id": item.org_id, "error": item.error} for item in exc.failures]}
    return None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Normalize HTTPExceptions into the shared error envelope for v1 routes.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(request: Request, exc: SeatLedgerError) -> JSONResponse:
    # Denials keep their structured figures so clients can explain them.
    status_code, code = _domain_status(exc)
    if status_code >= 500:
        logger.error("domain_error code=%s path=%s", code, request.url.path, exc_info=exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    details = _domain_details(exc)
    if not is_versioned_request(request):
        body = {"code": code, "message": str(exc), **(details or {})}
        return JSONResponse(content={"detail": body}, status_code=status_code, headers=headers)
    payload = error_response(request=request, code=code, message=str(exc), details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
