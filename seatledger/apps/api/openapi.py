from __future__ import annotations

from typing import Any

from seatledger.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | str | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Super administrator access required"),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
}

CAPACITY_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    402: _response(
        "Capacity exceeded",
        code="CAPACITY_EXCEEDED",
        message="Worker limit reached (10/10)",
        details={
            "organization_id": "org_example",
            "entity_type": "worker",
            "planned": 10,
            "active": 10,
            "max": 10,
            "plan_name": "Starter",
        },
    ),
    404: _response(
        "No active plan",
        code="NO_ACTIVE_PLAN",
        message="No subscription plan found for this organization",
    ),
}

RECONCILE_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    500: _response(
        "Reconciliation failed",
        code="RECONCILIATION_FAILED",
        message="Reconciliation failed",
        details="Unable to enumerate organizations",
    ),
}
