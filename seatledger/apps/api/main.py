from __future__ import annotations

import json
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from seatledger.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from seatledger.apps.api.response import API_VERSION, is_versioned_request
from seatledger.apps.api.routes.accounts import router as accounts_router
from seatledger.apps.api.routes.audit import router as audit_router
from seatledger.apps.api.routes.capacity import router as capacity_router
from seatledger.apps.api.routes.health import router as health_router
from seatledger.apps.api.routes.plans import router as plans_router
from seatledger.apps.api.routes.reconciliation import router as reconciliation_router
from seatledger.core.errors import SeatLedgerError
from seatledger.core.logging import configure_logging


_ENVELOPE_EXEMPT_PREFIXES = (
    "/v1/openapi.json",
    "/v1/docs",
    "/v1/redoc",
)


def _is_enveloped(payload: object) -> bool:
    return (
        isinstance(payload, dict)
        and "data" in payload
        and "meta" in payload
        and isinstance(payload.get("meta"), dict)
        and payload["meta"].get("api_version") == API_VERSION
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="SeatLedger API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        # Wrap versioned JSON responses in the standardized success envelope.
        if (
            is_versioned_request(request)
            and not request.url.path.startswith(_ENVELOPE_EXEMPT_PREFIXES)
            and response.status_code < 400
            and response.headers.get("content-type", "").startswith("application/json")
        ):
            raw_body = b""
            async for chunk in response.body_iterator:
                raw_body += chunk
            try:
                payload = json.loads(raw_body) if raw_body else None
            except ValueError:
                payload = None
            if payload is not None and not _is_enveloped(payload):
                payload = {
                    "data": payload,
                    "meta": {"request_id": request_id, "api_version": API_VERSION},
                }
            headers = {
                key: value
                for key, value in response.headers.items()
                if key.lower() not in {"content-length", "content-type"}
            }
            if payload is None:
                response = Response(
                    content=raw_body,
                    status_code=response.status_code,
                    headers=headers,
                    media_type="application/json",
                )
            else:
                response = JSONResponse(content=payload, status_code=response.status_code, headers=headers)

        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(SeatLedgerError)
    async def _domain_exception_handler(request: Request, exc: SeatLedgerError):
        return await domain_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(capacity_router, prefix=f"/{API_VERSION}")
    app.include_router(accounts_router, prefix=f"/{API_VERSION}")
    app.include_router(reconciliation_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(plans_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
