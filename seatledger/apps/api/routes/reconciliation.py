from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.apps.api.deps import Principal, get_db, require_super_admin
from seatledger.apps.api.openapi import DEFAULT_ERROR_RESPONSES, RECONCILE_ERROR_RESPONSES
from seatledger.core.errors import DatabaseError
from seatledger.services.reconciliation import (
    DEFAULT_MANUAL_REASON,
    Discrepancy,
    ReconciliationTrigger,
    get_reconciliation_service,
)


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/reconcile",
    tags=["reconciliation"],
    responses={**DEFAULT_ERROR_RESPONSES, **RECONCILE_ERROR_RESPONSES},
)


class ReconcileRequest(BaseModel):
    # Omit organization_id to reconcile every organization.
    organization_id: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class ReconciledOrganizationResponse(BaseModel):
    org_id: str
    org_name: str
    old_managers: int
    new_managers: int
    old_workers: int
    new_workers: int


class DiscrepancyResponse(BaseModel):
    org_id: str
    org_name: str
    stored_managers: int
    true_managers: int
    stored_workers: int
    true_workers: int


class ReconcileResponse(BaseModel):
    success: bool
    reconciled: list[ReconciledOrganizationResponse]
    remaining_discrepancies: list[DiscrepancyResponse]
    failures: list[dict[str, Any]]
    audit_failures: list[dict[str, Any]]
    message: str


def _discrepancy_response(item: Discrepancy) -> DiscrepancyResponse:
    return DiscrepancyResponse(
        org_id=item.org_id,
        org_name=item.org_name,
        stored_managers=item.stored_managers,
        true_managers=item.true_managers,
        stored_workers=item.stored_workers,
        true_workers=item.true_workers,
    )


def _reconcile_failed(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "RECONCILIATION_FAILED", "message": "Reconciliation failed", "details": message},
    )


@router.post("")
async def trigger_reconciliation(
    payload: ReconcileRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> ReconcileResponse:
    request = payload or ReconcileRequest()
    trigger = ReconciliationTrigger.manual(
        actor=principal.email or principal.subject_id,
        reason=request.reason or DEFAULT_MANUAL_REASON,
    )
    service = get_reconciliation_service()
    try:
        result = await service.reconcile_usage(trigger, request.organization_id)
        # Post-condition check; empty unless Ground Truth moved during the pass.
        remaining = await service.validate_usage(db, request.organization_id)
    except (DatabaseError, SQLAlchemyError) as exc:
        logger.error("manual_reconcile_failed actor=%s", trigger.actor, exc_info=exc)
        raise _reconcile_failed(str(exc)) from exc

    summary = result.summary()
    message = (
        f"Reconciled {len(result.reconciled)} organization(s)"
        if result.reconciled
        else "No discrepancies found"
    )
    return ReconcileResponse(
        success=result.ok,
        reconciled=[ReconciledOrganizationResponse(**item) for item in summary["reconciled"]],
        remaining_discrepancies=[_discrepancy_response(item) for item in remaining],
        failures=summary["failures"],
        audit_failures=summary["audit_failures"],
        message=message,
    )


@router.get("/discrepancies")
async def list_discrepancies(
    organization_id: str | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DiscrepancyResponse]:
    try:
        discrepancies = await get_reconciliation_service().validate_usage(db, organization_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while scanning usage") from exc
    return [_discrepancy_response(item) for item in discrepancies]
